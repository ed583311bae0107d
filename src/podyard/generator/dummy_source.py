"""Empty compilation unit so every generated target has at least one source."""
from __future__ import annotations

import re
from pathlib import Path

_INVALID = re.compile(r"[^A-Za-z0-9_]")


class DummySource:
    def __init__(self, label: str) -> None:
        self.label = label

    @property
    def class_name(self) -> str:
        return "PodsDummy_" + _INVALID.sub("_", self.label)

    def render(self) -> str:
        name = self.class_name
        return (
            "#import <Foundation/Foundation.h>\n"
            f"@interface {name} : NSObject\n@end\n"
            f"@implementation {name}\n@end\n"
        )

    def save_as(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        return path


__all__ = ["DummySource"]
