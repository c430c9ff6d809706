#
#  Copyright (C) 2017-2025 Dremio Corporation
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.prompts import Prompt
from mcp.server.fastmcp.resources import FunctionResource
from pydantic.networks import AnyUrl

from insightgate.metrics import get_metrics_app
from starlette.requests import Request
from starlette.responses import Response

from typing import Annotated, Optional, Dict, Any
from pathlib import Path
from insightgate import log
from typer import Typer, Option, Argument, BadParameter
from rich import console, table, print as pp
from click import Choice
import logging
from insightgate.config import settings
from insightgate.analytics.orchestrator import (
    AnalyticsOrchestrator,
    SYSTEM_PROMPT,
    TOOL_DEFINITIONS,
)
from insightgate.analytics.executor import QueryExecutor
from insightgate.analytics.tenant import (
    RequestTenantContextProvider,
    StaticTenantContextProvider,
    TenantAuthMiddleware,
    TenantContext,
    TenantContextProvider,
    reset_request_tenant,
    set_request_tenant,
    tenant_for_token,
    tenant_from_scope,
)
from insightgate.analytics import whitelist
from insightgate.api.store import create_store
from enum import StrEnum, auto
from json import dumps, load, loads
import asyncio
from yaml import dump
import uvicorn

from mcp.server.auth.middleware.auth_context import AuthContextMiddleware
from mcp.server.auth.middleware.bearer_auth import BearerAuthBackend
from mcp.server.auth.provider import AccessToken, TokenVerifier
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response as StarletteResponse


class RequireAuthWithWWWAuthenticateMiddleware(BaseHTTPMiddleware):
    """
    Rejects unauthenticated requests to the MCP endpoint with a 401 and a
    WWW-Authenticate header. Must be placed AFTER AuthenticationMiddleware so
    that the request user is available.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        user = request.scope.get("user")
        if request.url.path.startswith("/mcp") and (
            user is None or not user.is_authenticated
        ):
            return StarletteResponse(
                content="Unauthorized",
                status_code=401,
                headers={"WWW-Authenticate": "Bearer"},
            )

        return await call_next(request)


class Transports(StrEnum):
    stdio = auto()
    streamable_http = "streamable-http"


class FastMCPServerWithTenant(FastMCP):
    class TenantTokenVerifier(TokenVerifier):
        async def verify_token(self, token: str) -> AccessToken | None:
            if (tenant := tenant_for_token(token)) is None:
                log.logger("verify_token").info("token_rejected")
                return None
            return AccessToken(
                token=token,
                client_id=tenant.tenant_id,
                scopes=[tenant.role or "member"],
            )

    def streamable_http_app(self):
        token_verifier = FastMCPServerWithTenant.TenantTokenVerifier()
        app = super().streamable_http_app()
        # last added runs first
        app.add_middleware(TenantAuthMiddleware)
        app.add_middleware(RequireAuthWithWWWAuthenticateMiddleware)
        app.add_middleware(AuthContextMiddleware)
        app.add_middleware(
            AuthenticationMiddleware, backend=BearerAuthBackend(token_verifier)
        )
        # Metrics are served on a separate port, not mounted here
        return app


def create_orchestrator(
    transport: Transports = Transports.stdio,
    tenant_provider: Optional[TenantContextProvider] = None,
) -> AnalyticsOrchestrator:
    if tenant_provider is None:
        tenant_provider = (
            StaticTenantContextProvider()
            if transport == Transports.stdio
            else RequestTenantContextProvider()
        )
    return AnalyticsOrchestrator(
        QueryExecutor(create_store()), tenant_provider=tenant_provider
    )


def _tool(orchestrator: AnalyticsOrchestrator, name: str, description: str):
    async def invoke(intent: Dict[str, Any], ctx: Context) -> Dict[str, Any]:
        token = None
        request = getattr(ctx.request_context, "request", None)
        if request is not None and (
            tenant := tenant_from_scope(request.scope)
        ) is not None:
            token = set_request_tenant(tenant)
        try:
            return await orchestrator.dispatch(name, intent)
        finally:
            if token is not None:
                reset_request_tenant(token)

    invoke.__name__ = name
    invoke.__doc__ = description
    return invoke


def init(
    transport: Transports = Transports.stdio,
    port: int = None,
    host: str = "127.0.0.1",
    orchestrator: Optional[AnalyticsOrchestrator] = None,
) -> FastMCP:
    mcp_cls = FastMCP if transport == Transports.stdio else FastMCPServerWithTenant
    log.logger("init").info(
        "initializing_mcp_server", transport=str(transport), cls=mcp_cls.__name__
    )
    opts = {}
    if port is not None:
        opts["port"] = port
    if host is not None:
        opts["host"] = host

    mcp = mcp_cls("InsightGate", **opts)
    if orchestrator is None:
        orchestrator = create_orchestrator(transport)

    for definition in TOOL_DEFINITIONS:
        description = (
            f"{definition['description']}\n\n"
            "Pass the intent as `intent`, shaped by this JSON schema:\n"
            f"{dumps(definition['parameters'])}"
        )
        mcp.add_tool(
            _tool(orchestrator, definition["name"], description),
            name=definition["name"],
            description=description,
        )

    mcp.add_resource(
        FunctionResource(
            uri=AnyUrl("insightgate://resources"),
            name="resources",
            description="Resources that intents may query, with their aggregates",
            mime_type="application/json",
            fn=lambda: {
                name: {"aggregates": list(whitelist.allowed_aggregates(name))}
                for name in whitelist.list_allowed_resources()
            },
        )
    )
    mcp.add_prompt(
        Prompt.from_function(lambda: SYSTEM_PROMPT, "System Prompt", "System Prompt")
    )

    @mcp.custom_route("/healthz", methods=["GET"])
    async def health_check(_request: Request) -> Response:
        """Kubernetes-style health check endpoint"""
        return Response(content="OK", status_code=200, media_type="text/plain")

    return mcp


def create_metrics_server(host: str, port: int, log_level: str) -> uvicorn.Server:
    # Create a separate uvicorn server for Prometheus metrics.
    config = uvicorn.Config(
        app=get_metrics_app(),
        host=host,
        port=port,
        log_level=log_level.lower(),
        access_log=False,
    )
    server = uvicorn.Server(config)

    log.logger("metrics_server").info("metrics_server_created", host=host, port=port)
    return server


def run_with_metrics_server(
    app: FastMCP, transport: Transports, metrics_server: uvicorn.Server | None = None
):
    """
    Run the main MCP server, with the metrics server alongside it when given.

    Args:
        app: The FastMCP server instance
        transport: Transport type
        metrics_server: Optional metrics server to run concurrently
    """
    if metrics_server is None:
        app.run(transport=transport.value)
        return

    async def serve():
        log.logger("server_startup").info("starting_metrics_server")
        metrics_task = asyncio.create_task(metrics_server.serve())
        try:
            match transport:
                case Transports.stdio:
                    await app.run_stdio_async()
                case Transports.streamable_http:
                    await app.run_streamable_http_async()
        finally:
            metrics_server.should_exit = True
            try:
                await metrics_task
            except asyncio.CancelledError:
                log.logger("metrics_server").warning("metrics_server_cancelled")

    asyncio.run(serve())


ty = Typer(context_settings=dict(help_option_names=["-h", "--help"]))


@ty.command(name="run", help="Run the InsightGate MCP server")
def main(
    config_file: Annotated[
        Optional[Path],
        Option("-c", "--cfg", help="The config yaml for various options"),
    ] = None,
    log_to_file: Annotated[Optional[bool], Option(help="Log to file")] = True,
    enable_json_logging: Annotated[
        Optional[bool], Option(help="Enable JSON logs")
    ] = False,
    enable_streaming_http: Annotated[
        Optional[bool], Option(help="Run MCP as streaming HTTP")
    ] = False,
    log_level: Annotated[
        Optional[str],
        Option(
            help="The log level", click_type=Choice(list(logging._nameToLevel.keys()))
        ),
    ] = "INFO",
    port: Annotated[Optional[int], Option(help="The port to listen on")] = None,
    host: Annotated[
        Optional[str],
        Option(help="Where uvicorn listens for requests"),
    ] = "127.0.0.1",
):
    log.configure(enable_json_logging=enable_json_logging, to_file=log_to_file)
    log.set_level(log_level)
    transport = Transports.streamable_http if enable_streaming_http else Transports.stdio

    settings.configure(config_file)
    app = init(transport=transport, port=port, host=host)

    metrics_server = None
    if (m := settings.instance().metrics) and m.enabled and m.port is not None:
        metrics_server = create_metrics_server(
            host=host, port=m.port, log_level=log_level
        )

    run_with_metrics_server(app, transport, metrics_server)


tc = Typer(
    context_settings=dict(help_option_names=["-h", "--help"]),
    name="config",
    help="Configuration management",
)


@tc.command("list", help="Show the configuration file and its contents")
def show_default_config(
    config_file: Annotated[
        Optional[Path],
        Option("-c", "--cfg", help="The config yaml to show instead of the default"),
    ] = None,
    show_filename: Annotated[
        bool, Option(help="Only show the filename of the config file")
    ] = False,
):
    cfg = config_file or settings.default_config()
    pp(f"Config file: {cfg!s} (exists = {cfg.exists()!s})")
    if not show_filename:
        settings.configure(cfg)
        pp(
            dump(
                settings.instance().model_dump(
                    exclude_none=True, mode="json", exclude_unset=True
                )
            )
        )
    pp(f"Log file: {log.get_log_file()!s}")


@tc.command("create", help="Write a configuration file from the given options")
def create_default_config(
    kind: Annotated[
        settings.StoreKind, Option(help="The store the queries run against")
    ] = settings.StoreKind.sqlite,
    path: Annotated[
        Optional[str], Option(help="The sqlite database file (sqlite store)")
    ] = None,
    uri: Annotated[
        Optional[str], Option(help="The Flight SQL endpoint (flightsql store)")
    ] = None,
    pat: Annotated[
        Optional[str],
        Option(
            help="The access token. If it starts with @ then the rest is treated as a filename"
        ),
    ] = None,
    project_id: Annotated[
        Optional[str], Option(help="The project id sent with Flight SQL calls")
    ] = None,
    tenant_id: Annotated[
        Optional[str], Option(help="Tenant used by the stdio server and the CLI")
    ] = None,
    user_id: Annotated[Optional[str], Option(help="User of the static tenant")] = None,
    role: Annotated[
        Optional[str],
        Option(help="Role of the static tenant", click_type=Choice(["admin", "member"])),
    ] = None,
    token_budget: Annotated[
        Optional[int], Option(help="Per-tenant token budget, unlimited if unset")
    ] = None,
    dry_run: Annotated[
        bool, Option(help="Print the configuration instead of writing it")
    ] = False,
):
    store = settings.Store.model_validate(
        {
            k: v
            for k, v in {
                "kind": kind,
                "path": path,
                "uri": uri,
                "pat": pat,
                "project_id": project_id,
            }.items()
            if v is not None
        }
    )
    settings.configure(settings.default_config(), force=True)
    settings.instance().store = store
    if tenant_id is not None:
        settings.instance().tenant = settings.Tenant(
            tenant_id=tenant_id, user_id=user_id, role=role
        )
    if token_budget is not None:
        settings.instance().gate = settings.Gate(token_budget=token_budget)

    if dry_run:
        pp(settings.write_settings(dry_run=True))
    else:
        settings.write_settings()
        pp(f"Wrote config file: {settings.default_config()!s}")


# --------------------------------------------------------------------------------
# testing support

tl = Typer(
    context_settings=dict(help_option_names=["-h", "--help"]),
    name="tools",
    help="Support for testing tools directly",
)


@tl.command(
    name="list",
    help="List the available tools",
    context_settings=dict(help_option_names=["-h", "--help"]),
)
def tools_list():
    tab = table.Table(
        table.Column("Tool", justify="left", style="cyan"),
        "Description",
        "Required",
        title="Tools list",
        show_lines=True,
    )
    for definition in TOOL_DEFINITIONS:
        tab.add_row(
            definition["name"],
            definition["description"],
            ", ".join(definition["parameters"].get("required", [])),
        )
    console.Console().print(tab)


@tl.command(
    name="invoke",
    help="Execute an available tool",
    context_settings=dict(help_option_names=["-h", "--help"]),
)
def tools_exec(
    tool: Annotated[str, Option("-t", "--tool", help="The tool to execute")],
    config_file: Annotated[
        Optional[Path],
        Option("-c", "--cfg", help="The config yaml for various options"),
    ] = None,
    tenant_id: Annotated[
        Optional[str], Option(help="Tenant to run as, instead of the configured one")
    ] = None,
    user_id: Annotated[Optional[str], Option(help="User to run as")] = None,
    file: Annotated[
        Optional[Path], Option("-f", "--file", help="JSON file holding the intent")
    ] = None,
    intent: Annotated[
        Optional[str], Argument(help="The intent as a JSON document")
    ] = None,
):
    settings.configure(config_file)

    if file is not None:
        with file.open() as f:
            args = load(f)
    elif intent is not None:
        args = loads(intent)
    else:
        raise BadParameter("Provide the intent as an argument or with --file")

    names = [d["name"] for d in TOOL_DEFINITIONS]
    if tool not in names:
        raise BadParameter(f"Tool {tool} not found, expected one of {names}")

    provider = None
    if tenant_id is not None:
        provider = StaticTenantContextProvider(
            TenantContext(tenant_id=tenant_id, user_id=user_id)
        )
    orchestrator = create_orchestrator(Transports.stdio, tenant_provider=provider)

    async def _run():
        try:
            return await orchestrator.dispatch(tool, args)
        finally:
            await orchestrator.executor.store.close()

    pp(asyncio.run(_run()))


ty.add_typer(tl)
ty.add_typer(tc)


def cli():
    ty()


if __name__ == "__main__":
    cli()
