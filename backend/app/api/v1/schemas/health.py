from pydantic import BaseModel


class EngineConfigReport(BaseModel):
    backend: str
    apiKey: str | None = None
    apiKeyLength: int = 0
    baseURL: str | None = None


class HealthChecks(BaseModel):
    apiKeySet: bool
    baseURLSet: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    env: str
    storeBackend: str
    engine: EngineConfigReport
    checks: HealthChecks
