"""InsightFace/OpenCV-backed collaborators.

Import the submodules directly; importing this package does not load cv2,
torch or insightface.
"""
