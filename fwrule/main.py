import logging
from functools import lru_cache
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import FastAPI, Request, status, Depends
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from . import auth
from . import compiler
from . import config
from .errors import FirewallApplyError, InvalidRuleError
from .firewalld import FirewalldApplier, render_plan
from .models import ApplyResponse, ErrorResponse, HealthResponse, PlanResponse, RuleRequest


@lru_cache()
def get_settings() -> Dict:
    """
    Loads settings from the YAML file and caches the result.
    """
    settings = config.load_config()
    config.setup_logging(settings)
    return settings


def get_applier(settings: dict = Depends(get_settings)) -> FirewalldApplier:
    return FirewalldApplier(settings)


def apply_declared_rules(settings: Dict, applier: FirewalldApplier) -> List[str]:
    """
    Compile and apply the rules listed under `rules:` in the configuration.
    Invalid definitions are logged and skipped so one bad rule does not
    keep the others from being applied.
    """
    compiler_config = config.CompilerConfig.from_settings(settings)
    applied = []
    for idx, definition in enumerate(settings.get("rules") or []):
        try:
            rule = RuleRequest.model_validate(definition)
            plan = compiler.compile_rule(rule, compiler_config)
            applied.extend(applier.apply_plan(plan))
        except ValidationError as e:
            logging.error(f"Skipping invalid rule definition at index {idx}: {e}")
        except InvalidRuleError as e:
            logging.error(f"Skipping rule at index {idx}: {e}")
        except FirewallApplyError as e:
            logging.error(f"Failed to apply rule at index {idx}: {e}")
    return applied


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    On startup, it applies the rules declared in the configuration file.
    """
    logging.info("fwrule service starting up...")

    settings = get_settings()
    compiler_config = config.CompilerConfig.from_settings(settings)
    if not compiler_config.enable:
        logging.warning("firewalld rule management is disabled; declared rules are not applied")
    elif settings.get("rules"):
        applier = FirewalldApplier(settings)
        if applier.is_firewalld_available():
            applied = apply_declared_rules(settings, applier)
            logging.info(f"Applied {len(applied)} firewalld objects from declared rules")
        else:
            logging.error("Firewalld is not running - declared rules were not applied")

    yield
    logging.info("fwrule service shutting down.")


app = FastAPI(
    lifespan=lifespan,
    title="fwrule API",
    description="""
Compiles high-level firewall rules (trusted networks, protocol, ports, ICMP
types) into firewalld services, ipsets and rich rules.

* `/rules/compile` returns the objects a rule compiles to without touching firewalld
* `/rules/apply` writes them to firewalld's permanent configuration
""",
    version="1.0.0",
    openapi_tags=[
        {"name": "Rules", "description": "Rule compilation and application"},
        {"name": "System", "description": "Health monitoring and system status"},
    ],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors to 400 Bad Request."""
    error_msg = "Invalid rule definition."
    if exc.errors():
        first_error = exc.errors()[0]
        location = ".".join(str(part) for part in first_error.get("loc", []) if part != "body")
        if location:
            error_msg = f"Invalid rule definition: {location}: {first_error.get('msg', 'invalid value')}"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": error_msg},
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.post(
    "/rules/compile",
    response_model=PlanResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Bad request - invalid rule definition"},
        401: {"model": ErrorResponse, "description": "Unauthorized - invalid or missing API key"},
    },
    tags=["Rules"],
    summary="Compile Rule",
    description="""
    Compile a rule into firewalld objects without applying them.

    * Requires a valid API key in the `X-Api-Key` header
    * Objects are listed in the order they would be applied
    """,
    status_code=status.HTTP_200_OK,
)
async def compile_rule(
    request: Request,
    body: RuleRequest,
    settings: dict = Depends(get_settings),
):
    api_key = request.headers.get("X-Api-Key")
    if not auth.is_valid_api_key(api_key, settings):
        logging.warning("Invalid or missing API key on /rules/compile.")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API key.")

    try:
        plan = compiler.compile_rule(body, config.CompilerConfig.from_settings(settings))
    except InvalidRuleError as e:
        logging.warning(f"Rejected rule '{body.name}': {e}")
        return _error(status.HTTP_400_BAD_REQUEST, str(e))

    return PlanResponse.from_plan(plan, render_plan(plan))


@app.post(
    "/rules/apply",
    response_model=ApplyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Bad request - invalid rule definition"},
        401: {"model": ErrorResponse, "description": "Unauthorized - invalid or missing API key"},
        403: {"model": ErrorResponse, "description": "Forbidden - API key may not apply rules"},
        502: {"model": ErrorResponse, "description": "firewall-cmd failed to apply an object"},
        503: {"model": ErrorResponse, "description": "firewalld is not running"},
    },
    tags=["Rules"],
    summary="Apply Rule",
    description="""
    Compile a rule and write the resulting objects to firewalld.

    * Requires an API key with `allow_apply: true`
    * Applying the same rule twice is a no-op for firewalld
    """,
    status_code=status.HTTP_200_OK,
)
async def apply_rule(
    request: Request,
    body: RuleRequest,
    settings: dict = Depends(get_settings),
    applier: FirewalldApplier = Depends(get_applier),
):
    api_key = request.headers.get("X-Api-Key")
    if not auth.is_valid_api_key(api_key, settings):
        logging.warning("Invalid or missing API key on /rules/apply.")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API key.")

    key_name = auth.get_api_key_name(api_key, settings)
    if not auth.can_apply_rules(api_key, settings):
        logging.warning(f"API key '{key_name}' lacks permission to apply rules.")
        return _error(status.HTTP_403_FORBIDDEN, "API key lacks permission to apply rules.")

    try:
        plan = compiler.compile_rule(body, config.CompilerConfig.from_settings(settings))
    except InvalidRuleError as e:
        logging.warning(f"Rejected rule '{body.name}' from '{key_name}': {e}")
        return _error(status.HTTP_400_BAD_REQUEST, str(e))

    if plan.is_empty():
        return ApplyResponse(rule=plan.rule, applied=[], warnings=plan.warnings)

    if not applier.is_firewalld_available():
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "firewalld is not running.")

    try:
        applied = applier.apply_plan(plan)
    except FirewallApplyError as e:
        logging.error(f"Applying rule '{body.name}' for '{key_name}' failed: {e}")
        return _error(status.HTTP_502_BAD_GATEWAY, str(e))

    logging.info(f"API key '{key_name}' applied rule '{body.name}' ({len(applied)} objects)")
    return ApplyResponse(rule=plan.rule, applied=applied, warnings=plan.warnings)


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health Check",
    description="Verify that the fwrule service is running and configured.",
    status_code=status.HTTP_200_OK,
)
async def health_check(settings: dict = Depends(get_settings)):
    if not settings.get("api_keys"):
        logging.error("Health check failed: No API keys configured")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": "No API keys configured"},
        )
    try:
        config.CompilerConfig.from_settings(settings)
    except ValueError as e:
        logging.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": "Invalid firewalld configuration"},
        )
    return HealthResponse(status="ok")
