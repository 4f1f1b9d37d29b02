import os

import httpx
import modal

app = modal.App("tms-sync")

image = (
    modal.Image.debian_slim(python_version="3.11")
    .pip_install(
        "fastapi>=0.115.0",
        "uvicorn>=0.30.0",
        "pydantic>=2.7",
        "pydantic-settings>=2.3",
        "httpx>=0.27",
        "supabase>=2.5",
        "redis>=5.0",
        "python-jose[cryptography]>=3.3",
    )
    .add_local_python_source("tms_sync")
)

secrets = [modal.Secret.from_name("tms-sync-env")]


@app.function(image=image, secrets=secrets)
@modal.asgi_app()
def fastapi_app():
    from tms_sync.main import create_app

    return create_app()


def _trigger(job: str) -> dict:
    base_url = os.environ["TMS_SYNC_BASE_URL"].rstrip("/")
    response = httpx.post(
        f"{base_url}/api/internal/scheduler/{job}",
        headers={"Authorization": f"Bearer {os.environ['CRON_SECRET']}"},
        timeout=360.0,
    )
    response.raise_for_status()
    return response.json()


@app.function(image=image, secrets=secrets, schedule=modal.Period(hours=4), timeout=420)
def reconcile():
    return _trigger("reconcile")


@app.function(image=image, secrets=secrets, schedule=modal.Period(minutes=15), timeout=300)
def dlq_retry():
    return _trigger("dlq-retry")


@app.function(image=image, secrets=secrets, schedule=modal.Cron("0 3 * * *"), timeout=300)
def cleanup():
    return _trigger("cleanup")
