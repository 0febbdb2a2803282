import math
from typing import Sequence

from .models import FaceLandmarks, HeadPose, Point


def euclidean_distance(p1: Point, p2: Point) -> float:
    return math.hypot(p2.x - p1.x, p2.y - p1.y)


def centroid(points: Sequence[Point]) -> Point:
    return Point(
        x=sum(p.x for p in points) / len(points),
        y=sum(p.y for p in points) / len(points),
    )


def eye_aspect_ratio(eye: Sequence[Point]) -> float:
    """EAR over the six eye contour points: vertical spans against the horizontal span"""
    height1 = euclidean_distance(eye[1], eye[5])
    height2 = euclidean_distance(eye[2], eye[4])
    width = euclidean_distance(eye[0], eye[3])
    if width == 0:
        return 0.0
    return (height1 + height2) / (2.0 * width)


def estimate_head_pose(landmarks: FaceLandmarks) -> HeadPose:
    """
    Approximate yaw and roll (degrees) from eye and nose geometry.

    Roll is the tilt of the line through both eye centres. Yaw is derived from
    the horizontal offset of the nose tip from the eye midpoint relative to
    half the inter-ocular distance. Pitch is not estimated.
    """
    left = centroid(landmarks.left_eye)
    right = centroid(landmarks.right_eye)
    nose_tip = landmarks.nose[3]

    roll = math.degrees(math.atan2(right.y - left.y, right.x - left.x))

    half_iod = euclidean_distance(left, right) / 2
    if half_iod == 0:
        return HeadPose(yaw=90.0, roll=roll)
    offset = nose_tip.x - (left.x + right.x) / 2
    ratio = max(-1.0, min(1.0, offset / half_iod))
    yaw = math.degrees(math.asin(ratio))

    return HeadPose(yaw=yaw, roll=roll)


def normalized_eye_distance(landmarks: FaceLandmarks) -> float:
    """Outer eye-corner distance divided by the jaw span (scale invariant)"""
    eye_span = euclidean_distance(landmarks.left_eye[0], landmarks.right_eye[3])
    face_width = euclidean_distance(landmarks.jaw[0], landmarks.jaw[-1])
    if face_width == 0:
        return 0.0
    return eye_span / face_width


def geometric_similarity(first: FaceLandmarks, second: FaceLandmarks) -> float:
    d1 = normalized_eye_distance(first)
    d2 = normalized_eye_distance(second)
    longest = max(d1, d2)
    if longest == 0:
        return 0.0
    return max(0.0, 1 - abs(d1 - d2) / longest)
