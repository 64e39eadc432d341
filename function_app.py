"""Azure Functions entry point: HTTP routes for the certificate workflow and the request sweep timer."""

import json
import logging
import threading

import azure.functions as func

from cert_orchestrator import api
from cert_orchestrator.config import load_config
from cert_orchestrator.orchestrator import CertificateOrchestrator, create_orchestrator

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

_orchestrator: CertificateOrchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> CertificateOrchestrator:
    """Return the process-wide orchestrator; the account key is loaded on first use."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = create_orchestrator(load_config())
        return _orchestrator


def _json_response(response: api.Response) -> func.HttpResponse:
    status_code, body = response
    return func.HttpResponse(json.dumps(body), status_code=status_code, mimetype="application/json")


# POST /api/certificates/request: open an order and return the challenges to publish
@app.route(route="certificates/request", methods=["POST"])
def request_certificate(req: func.HttpRequest) -> func.HttpResponse:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    return _json_response(api.request_certificate(get_orchestrator(), body))


# POST /api/certificates/validate/{requestId}: answer challenges and poll until valid
@app.route(route="certificates/validate/{requestId}", methods=["POST"])
def validate_domain(req: func.HttpRequest) -> func.HttpResponse:
    config = load_config()
    request_id = req.route_params.get("requestId")
    return _json_response(api.validate(get_orchestrator(), request_id, config.validation_timeout_seconds))


# GET /api/certificates/status/{requestId}: finalize and hand out the certificate once
@app.route(route="certificates/status/{requestId}", methods=["GET"])
def certificate_status(req: func.HttpRequest) -> func.HttpResponse:
    config = load_config()
    request_id = req.route_params.get("requestId")
    return _json_response(api.status(get_orchestrator(), request_id, config.validation_timeout_seconds))


@app.route(route="health", methods=["GET"])
def health(req: func.HttpRequest) -> func.HttpResponse:
    return _json_response(api.health(load_config().acme_directory_url))


# Timer trigger: evict abandoned requests every five minutes
@app.timer_trigger(schedule="0 */5 * * * *", arg_name="timer", run_on_startup=False)
def sweep_expired_requests(timer: func.TimerRequest) -> None:
    evicted = get_orchestrator().sweep_expired()
    logging.info("Request sweep evicted %d request(s)", evicted)
