from fastapi.testclient import TestClient

from sandbox_orchestrator.api.main import create_app
from sandbox_orchestrator.sandbox.memory import ScriptedSandboxProvider


def test_health_endpoint() -> None:
    app = create_app(provider=ScriptedSandboxProvider())
    client = TestClient(app)
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "sandbox-orchestrator"
    assert payload["timestamp"]
