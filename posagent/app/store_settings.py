from pydantic import ValidationError as SchemaError

from .db import SETTINGS_STORE_KEY, LocalStore
from .errors import ValidationError
from .logs import json_log
from .models import StoreSettings


def get_store_settings(store: LocalStore, default_tax_rate="17") -> StoreSettings:
    raw = store.get_value(SETTINGS_STORE_KEY, None)
    if not isinstance(raw, dict):
        return StoreSettings(tax_rate=default_tax_rate)
    try:
        return StoreSettings.model_validate({"tax_rate": default_tax_rate, **raw})
    except SchemaError as ex:
        json_log("warning", "settings.store_corrupt", error=str(ex)[:300])
        return StoreSettings(tax_rate=default_tax_rate)


def save_store_settings(store: LocalStore, patch: dict, default_tax_rate="17") -> StoreSettings:
    # Shallow merge, same as the cashier settings form: unspecified fields keep their value.
    current = get_store_settings(store, default_tax_rate=default_tax_rate)
    try:
        updated = StoreSettings.model_validate({**current.model_dump(mode="json"), **(patch or {})})
    except SchemaError as ex:
        raise ValidationError(f"invalid store settings: {ex.errors()[0].get('msg', 'invalid')}") from ex
    if updated.tax_rate < 0 or updated.tax_rate > 100:
        raise ValidationError("tax_rate must be between 0 and 100", field="tax_rate")
    store.set_value(SETTINGS_STORE_KEY, updated.model_dump(mode="json"))
    return updated
