"""
Gestionnaire d'exceptions HTTP.
Toutes les erreurs sont rendues en JSON {"detail": ...} (API pure, pas de pages web).
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def json_http_errors(request: Request, exc: HTTPException):
        headers = getattr(exc, "headers", None)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)
