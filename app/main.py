from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from strawberry.fastapi import GraphQLRouter

from app import models  # noqa: F401  registers every mapper before the first query
from app.core.config import get_settings
from app.core.exceptions import DomainException
from app.core.logging_config import setup_logging
from app.graphql.context import build_context
from app.graphql.schema import schema

setup_logging()
settings = get_settings()

app = FastAPI(title="Studio scheduling")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content=http_exc.detail)


@app.get("/health")
async def health():
    return {"status": "ok"}


graphql_app = GraphQLRouter(
    schema=schema,
    context_getter=build_context,
    graphiql=True
)
app.include_router(graphql_app, prefix="/graphql")
