"""Board presets for the partner portal's three deal boards.

- admin: sales + implementation stages on ``admin_stage``; the implementation
  group starts collapsed and deals with no admin stage land in "urs"; the
  deal owner is notified of every move and account users of each new
  Closed Won deal
- partner_manager: sales stages on ``stage``
- partner: sales stages on ``stage``; moving a deal to Closed Won must be
  confirmed before it is committed

build_hooks turns a config's notification flags into post-commit hooks.
"""

from __future__ import annotations

from collections.abc import Callable

from src.dealboard.board.board import BoardConfig
from src.dealboard.board.hooks import (
    AccountUsersClosedWonHook,
    OwnerNotificationHook,
    SessionFactory,
    StageChangeHook,
)
from src.dealboard.board.registry import (
    IMPLEMENTATION_GROUP,
    IMPLEMENTATION_STAGES,
    SALES_STAGES,
    StageRegistry,
)
from src.dealboard.config import Settings


def admin_board(settings: Settings) -> BoardConfig:
    return BoardConfig(
        name="admin",
        registry=StageRegistry(
            SALES_STAGES + IMPLEMENTATION_STAGES, settings.ADMIN_FALLBACK_STAGE
        ),
        stage_field="admin_stage",
        collapsed_groups=frozenset({IMPLEMENTATION_GROUP}),
        notify_owner=True,
        notify_account_users=True,
        activity_subject="Implementation stage",
    )


def partner_manager_board(settings: Settings) -> BoardConfig:
    return BoardConfig(
        name="partner_manager",
        registry=StageRegistry(SALES_STAGES, settings.PIPELINE_FALLBACK_STAGE),
        stage_field="stage",
    )


def partner_board(settings: Settings) -> BoardConfig:
    return BoardConfig(
        name="partner",
        registry=StageRegistry(
            SALES_STAGES, settings.PIPELINE_FALLBACK_STAGE
        ).with_confirmation("closed_won"),
        stage_field="stage",
    )


BOARD_PRESETS: dict[str, Callable[[Settings], BoardConfig]] = {
    "admin": admin_board,
    "partner_manager": partner_manager_board,
    "partner": partner_board,
}


def build_board_config(name: str, settings: Settings) -> BoardConfig:
    """Build the named preset.

    Raises:
        KeyError: If no preset has that name.
    """
    try:
        factory = BOARD_PRESETS[name]
    except KeyError:
        raise KeyError(f"Unknown board preset: {name}") from None
    return factory(settings)


def build_hooks(config: BoardConfig, session_factory: SessionFactory) -> list[StageChangeHook]:
    """Post-commit hooks enabled by the config's notification flags."""
    hooks: list[StageChangeHook] = []
    if config.notify_owner:
        hooks.append(OwnerNotificationHook(session_factory))
    if config.notify_account_users:
        hooks.append(AccountUsersClosedWonHook(session_factory))
    return hooks
