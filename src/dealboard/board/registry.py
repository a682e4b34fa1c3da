"""Stage registry -- the ordered, immutable set of columns a board can show.

A registry is built once at startup from a list of Stage definitions and a
fallback stage id. Deals whose stage is missing or unknown are placed in the
fallback column. Stages belong to groups ("sales", "implementation"); a board
may collapse a group, hiding its columns and removing them as drop targets.

The stage tables below mirror the pipelines used by the partner portal:
- SALES_STAGES: the deal pipeline shared by partners and partner managers
- IMPLEMENTATION_STAGES: post-sale delivery phases tracked on the admin board
"""

from __future__ import annotations

from collections.abc import Iterable

from src.dealboard.board.schemas import Stage

SALES_GROUP = "sales"
IMPLEMENTATION_GROUP = "implementation"


def _stages(group: str, rows: list[tuple[str, str, str]], start: int = 0) -> tuple[Stage, ...]:
    return tuple(
        Stage(id=stage_id, label=label, color=color, position=start + idx, group=group)
        for idx, (stage_id, label, color) in enumerate(rows)
    )


SALES_STAGES: tuple[Stage, ...] = _stages(
    SALES_GROUP,
    [
        ("new_deal", "New Deal", "bg-gray-100 border-gray-300"),
        ("need_analysis", "Need Analysis", "bg-blue-100 border-blue-300"),
        ("proposal", "Proposal", "bg-yellow-100 border-yellow-300"),
        ("negotiation", "Negotiation", "bg-purple-100 border-purple-300"),
        ("closed_won", "Closed Won", "bg-green-100 border-green-300"),
        ("closed_lost", "Closed Lost", "bg-red-100 border-red-300"),
    ],
)

IMPLEMENTATION_STAGES: tuple[Stage, ...] = _stages(
    IMPLEMENTATION_GROUP,
    [
        ("urs", "URS", "bg-cyan-100 border-cyan-300"),
        ("base_deployment", "Base Deployment", "bg-indigo-100 border-indigo-300"),
        ("gap_assessment", "Gap Assessment", "bg-pink-100 border-pink-300"),
        ("development", "Development", "bg-orange-100 border-orange-300"),
        ("uat", "UAT", "bg-teal-100 border-teal-300"),
        ("iq", "IQ", "bg-lime-100 border-lime-300"),
        ("oq", "OQ", "bg-amber-100 border-amber-300"),
        ("deployment", "Deployment", "bg-emerald-100 border-emerald-300"),
        ("pq", "PQ", "bg-violet-100 border-violet-300"),
        ("live", "LIVE", "bg-green-200 border-green-400"),
    ],
    start=len(SALES_STAGES),
)


class StageRegistry:
    """Ordered, immutable stage list with a fallback stage.

    Args:
        stages: Stage definitions. Column order follows ``position``; ties
            keep the given order.
        fallback: Stage id assigned to deals with a missing or unknown stage.

    Raises:
        ValueError: If stage ids are duplicated, the list is empty, or the
            fallback is not one of the stages.
    """

    def __init__(self, stages: Iterable[Stage], fallback: str) -> None:
        ordered = tuple(sorted(stages, key=lambda s: s.position))
        if not ordered:
            raise ValueError("A stage registry needs at least one stage")

        by_id: dict[str, Stage] = {}
        for stage in ordered:
            if stage.id in by_id:
                raise ValueError(f"Duplicate stage id: {stage.id}")
            by_id[stage.id] = stage

        if fallback not in by_id:
            raise ValueError(f"Fallback stage {fallback!r} is not a registered stage")

        self._stages = ordered
        self._by_id = by_id
        self._fallback = fallback

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._by_id

    @property
    def fallback(self) -> str:
        return self._fallback

    def list_stages(self) -> tuple[Stage, ...]:
        """All stages in column order."""
        return self._stages

    def get(self, stage_id: str) -> Stage | None:
        return self._by_id.get(stage_id)

    def contains(self, stage_id: str | None) -> bool:
        return stage_id is not None and stage_id in self._by_id

    def normalize(self, stage_id: str | None) -> str:
        """Return stage_id if known, otherwise the fallback stage."""
        return stage_id if self.contains(stage_id) else self._fallback

    def label_for(self, stage_id: str) -> str:
        """Display label for a stage; unknown ids are shown as-is."""
        stage = self._by_id.get(stage_id)
        return stage.label if stage is not None else stage_id

    def groups(self) -> list[str]:
        """Group names in the order their first column appears."""
        seen: list[str] = []
        for stage in self._stages:
            if stage.group not in seen:
                seen.append(stage.group)
        return seen

    def stages_in_group(self, group: str) -> tuple[Stage, ...]:
        return tuple(s for s in self._stages if s.group == group)

    def with_confirmation(self, *stage_ids: str) -> StageRegistry:
        """Copy of this registry where moves into ``stage_ids`` need confirmation."""
        unknown = [s for s in stage_ids if s not in self._by_id]
        if unknown:
            raise ValueError(f"Unknown stages: {', '.join(unknown)}")
        stages = [
            s.model_copy(update={"requires_confirmation": True}) if s.id in stage_ids else s
            for s in self._stages
        ]
        return StageRegistry(stages, self._fallback)
