# Optional service index
# uvicorn main:app --host 0.0.0.0 --port 20009 --reload
from common.constants import APP_VERSION, SERVICES
from libs.fastapi_service import FastAPIServiceFactory, ServiceAppConfig

service_config = ServiceAppConfig(
    title="Zicom Safety Service Index",
    description="Lists the Zicom Safety services and their docs.",
    service_name="service_index",
    version=APP_VERSION,
    enable_metrics=False,  # discovery only
)

factory = FastAPIServiceFactory(service_config)
app = factory.create_app()


@app.get("/services")
async def index():
    return {
        "services": {
            name: f"http://127.0.0.1:{port}/docs" for name, (_module, port) in SERVICES.items()
        }
    }
