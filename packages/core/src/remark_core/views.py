"""Diff views: which two trees a review compares."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from remark_store.errors import ArgumentError


class ViewKind(str, Enum):
    ALL = "all"
    STAGED = "staged"
    UNSTAGED = "unstaged"
    BASE = "base"


@dataclass(frozen=True)
class ViewDescriptor:
    """A view plus, for BASE, the literal ref the comparison is made against."""

    kind: ViewKind
    base_ref: str | None = None

    def __post_init__(self):
        if self.kind is ViewKind.BASE and not self.base_ref:
            raise ArgumentError("the base view needs a base ref (--base)")
        if self.kind is not ViewKind.BASE and self.base_ref is not None:
            object.__setattr__(self, "base_ref", None)

    @classmethod
    def all(cls) -> ViewDescriptor:
        return cls(ViewKind.ALL)

    @classmethod
    def staged(cls) -> ViewDescriptor:
        return cls(ViewKind.STAGED)

    @classmethod
    def unstaged(cls) -> ViewDescriptor:
        return cls(ViewKind.UNSTAGED)

    @classmethod
    def base(cls, ref: str) -> ViewDescriptor:
        return cls(ViewKind.BASE, ref)

    @classmethod
    def parse(cls, name: str | None, base_ref: str | None = None) -> ViewDescriptor:
        """Build a view from a CLI/LSP name. ``None`` means ALL."""
        if name is None:
            return cls.all()
        try:
            kind = ViewKind(name.strip().lower())
        except ValueError:
            raise ArgumentError(f"unknown view {name!r} (expected all, staged, unstaged or base)") from None
        return cls(kind, base_ref if kind is ViewKind.BASE else None)

    @property
    def label(self) -> str:
        if self.kind is ViewKind.BASE:
            return f"base ({self.base_ref})"
        return self.kind.value

    def __str__(self) -> str:
        return self.label


def related_views(view: ViewDescriptor, base_ref: str | None = None) -> list[ViewDescriptor]:
    """Every view a comment on ``view`` may also live under, ``view`` first.

    Read-side surfaces merge records in this order; resolve toggles all of
    them. The BASE view is included only when a base ref is known.
    """
    if view.kind is ViewKind.ALL:
        order = [ViewDescriptor.all(), ViewDescriptor.staged(), ViewDescriptor.unstaged()]
    elif view.kind is ViewKind.STAGED:
        order = [ViewDescriptor.staged(), ViewDescriptor.all(), ViewDescriptor.unstaged()]
    elif view.kind is ViewKind.UNSTAGED:
        order = [ViewDescriptor.unstaged(), ViewDescriptor.all(), ViewDescriptor.staged()]
    elif view.kind is ViewKind.BASE:
        return [view, ViewDescriptor.all(), ViewDescriptor.staged(), ViewDescriptor.unstaged()]
    else:
        raise ValueError(f"unhandled view kind {view.kind!r}")
    if base_ref:
        order.append(ViewDescriptor.base(base_ref))
    return order
