from flask import current_app

from arkana import db
from arkana.models import ArkanaData
from . import catalog

EFFECT_DATA_TYPE = 'effect'


def sync_stored_effects() -> int:
    """Overlay admin-edited effect rows on the bundled catalog."""
    rows = (
        ArkanaData.query
        .filter_by(data_type=EFFECT_DATA_TYPE)
        .order_by(ArkanaData.order_number, ArkanaData.id)
        .all()
    )
    definitions = []
    for row in rows:
        definition = dict(row.data)
        definition['id'] = row.id
        definitions.append(definition)
    catalog.register_effects(definitions, replace=True)
    current_app.logger.info(f"[catalog] overlaid {len(definitions)} stored effect definitions")
    return len(definitions)


def refresh_stored_effects(ttl_sec) -> bool:
    """Re-sync the overlay when it is older than ``ttl_sec``; False if nothing ran."""
    if not catalog.overrides_stale(ttl_sec):
        return False
    try:
        sync_stored_effects()
    except Exception as exc:
        # Fresh databases have no arkana_data table until migrations run
        db.session.rollback()
        current_app.logger.warning(f"[catalog] stored effects not loaded: {exc}")
        return False
    return True
