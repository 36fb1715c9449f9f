"""
Grid geometry helpers.

Cells are addressed by index = y * gridCount + x on a square grid.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set


@dataclass
class Box:
    """Maximal rectangle of cells sharing the same content"""
    content: Any
    x: int
    y: int
    width: int
    height: int
    spaces: List[int] = field(default_factory=list)

    def toDict(self) -> Dict[str, Any]:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
            'spaces': list(self.spaces)
        }


def idxToCoords(gridCount: int, idx: int) -> tuple:
    return idx % gridCount, idx // gridCount


def idxInBox(gridCount: int, startIdx: int, endIdx: int, idx: int) -> bool:
    """True if idx lies in the rectangle spanned by startIdx and endIdx (any corner order)"""
    startX, startY = idxToCoords(gridCount, startIdx)
    endX, endY = idxToCoords(gridCount, endIdx)
    x, y = idxToCoords(gridCount, idx)
    lowX, highX = min(startX, endX), max(startX, endX)
    lowY, highY = min(startY, endY), max(startY, endY)
    return lowX <= x <= highX and lowY <= y <= highY


def boxesFromCells(gridCount: int, contentAt: Callable[[int], Optional[Any]]) -> List[Box]:
    """
    Partition the grid into rectangles of equal content.

    Scans row-major. From each unvisited cell the box grows downward as far as
    the content matches, then rightward one full column at a time. Cells whose
    content is None are skipped.
    """
    boxes: List[Box] = []
    visited: Set[int] = set()

    def matches(x: int, y: int, content: Any) -> bool:
        idx = y * gridCount + x
        return idx not in visited and contentAt(idx) == content

    for y in range(gridCount):
        for x in range(gridCount):
            idx = y * gridCount + x
            content = contentAt(idx)
            if idx in visited or content is None:
                continue

            spaces = [idx]
            maxY = y + 1
            while maxY < gridCount and matches(x, maxY, content):
                spaces.append(maxY * gridCount + x)
                maxY += 1

            maxX = x + 1
            while maxX < gridCount and all(matches(maxX, cy, content) for cy in range(y, maxY)):
                spaces.extend(cy * gridCount + maxX for cy in range(y, maxY))
                maxX += 1

            spaces.sort()
            box = Box(content=content, x=x, y=y, width=maxX - x, height=maxY - y, spaces=spaces)
            boxes.append(box)
            visited.update(spaces)

    return boxes
