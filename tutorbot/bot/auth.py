from tutorbot.bot import ui
from tutorbot.core.config import Settings
from tutorbot.core.errors import NotAuthorized


def is_admin(settings: Settings, tg_id: int) -> bool:
    return settings.is_admin(tg_id)


def require_admin(settings: Settings, tg_id: int) -> None:
    """Raise NotAuthorized unless tg_id is on the configured allow-list."""
    if not is_admin(settings, tg_id):
        raise NotAuthorized(ui.not_authorized())
