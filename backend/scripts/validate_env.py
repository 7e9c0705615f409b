from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.config import get_settings


def main() -> int:
    try:
        settings = get_settings()
    except RuntimeError as exc:
        print(f"Invalid configuration: {exc}")
        return 1

    production = settings.environment.lower() == "production"
    store = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_SERVICE_KEY": settings.supabase_service_key or settings.supabase_key,
    }
    optional = {
        "POKE_API_KEY": settings.poke_api_key,
    }

    missing_store = [name for name, value in store.items() if not str(value or "").strip()]

    print("Environment check")
    print("=================")
    for name, value in store.items():
        label = "required" if production else "optional, in-process storage otherwise"
        print(f"[{'ok' if value else 'missing'}] {name} ({label})")
    for name, value in optional.items():
        print(f"[{'ok' if value else 'missing'}] {name} (optional)")

    print("\nMarket engine")
    print(f"  tick every      {settings.fallback_tick_seconds:g}s")
    print(f"  live quotes     {'every ' + format(settings.live_refresh_seconds, 'g') + 's' if settings.live_feed_enabled else 'disabled'}")
    print(f"  quote endpoint  {settings.quote_api_url} (batches of {settings.quote_batch_size})")
    print(f"  autostart       {settings.market_engine_autostart}")

    if production and missing_store:
        print("\nMissing required environment variables:")
        for item in missing_store:
            print(f"- {item}")
        return 1

    print("\nConfiguration looks usable.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
