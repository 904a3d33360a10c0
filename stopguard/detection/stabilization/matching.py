"""
Spatial Matching Utilities
==========================

Bounded Context: Spatial Matching (geometría de dedup)

- IoU (Intersection over Union) entre bounding boxes normalizados
- Optimizado para coordenadas normalizadas (0.0-1.0), pure Python
"""
from ..models import BoundingBox


def calculate_iou(bbox1: BoundingBox, bbox2: BoundingBox) -> float:
    """
    Calcula Intersection over Union (IoU) entre dos bounding boxes.

    Valores cercanos a 1.0 indican alta superposición (mismo cartel).
    Valores cercanos a 0.0 indican poca/nula superposición (carteles distintos).

    Properties (matemáticas):
    - Simetría: IoU(A, B) = IoU(B, A)
    - Bounded: 0.0 <= IoU <= 1.0
    - Identidad: IoU(A, A) = 1.0 (si área > 0)
    - Disjoint: IoU(A, B) = 0.0 si no hay overlap

    Args:
        bbox1: BoundingBox (origen top-left + size, normalizado)
        bbox2: BoundingBox (origen top-left + size, normalizado)

    Returns:
        IoU score [0.0, 1.0]

    Example:
        >>> a = BoundingBox(0.4, 0.4, 0.2, 0.2)
        >>> b = BoundingBox(0.41, 0.40, 0.2, 0.2)
        >>> calculate_iou(a, b) > 0.9
        True
    """
    inter_x_min = max(bbox1.x, bbox2.x)
    inter_y_min = max(bbox1.y, bbox2.y)
    inter_x_max = min(bbox1.x_max, bbox2.x_max)
    inter_y_max = min(bbox1.y_max, bbox2.y_max)

    # Sin overlap
    if inter_x_max < inter_x_min or inter_y_max < inter_y_min:
        return 0.0

    inter_area = (inter_x_max - inter_x_min) * (inter_y_max - inter_y_min)

    # Union = area1 + area2 - intersection
    union_area = bbox1.area + bbox2.area - inter_area

    # Edge case: bboxes de tamaño 0
    if union_area <= 0:
        return 0.0

    return inter_area / union_area
