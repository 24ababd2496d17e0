"""Enrollment building blocks (descriptor/gallery/loader/matcher).

Nothing here talks to a camera or a model directly; the loader goes through the
descriptor service interface so tests can run without InsightFace.
"""
