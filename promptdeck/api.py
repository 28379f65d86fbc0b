import json
import logging

from aiohttp import web

from .constants import DEFAULT_PAGE_LIMIT, LOGGER_NAME, MAX_PAGE_LIMIT
from .errors import ConflictError, QueryError

logger = logging.getLogger(LOGGER_NAME)

STORE_KEY = web.AppKey("store", object)
REGISTRY_KEY = web.AppKey("registry", object)
RUNNER_KEY = web.AppKey("migration_runner", object)

CRUD_ENTITIES = ("prompts", "files", "deployments", "executions")

_LIST_PARAMS = {"page", "limit", "search", "order_by", "order_direction"}


def _json_response(obj, status=200):
    return web.Response(
        status=status,
        text=json.dumps(obj, ensure_ascii=False),
        content_type="application/json",
    )


def _bad_request(msg):
    return _json_response({"error": msg}, status=400)


def _not_found(entity):
    return _json_response({"error": f"{entity} record not found"}, status=404)


def _parse_positive_int(raw, default, name, upper=None):
    if raw in (None, ""):
        return default, None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None, f"{name} must be an integer"
    if value < 1 or (upper is not None and value > upper):
        bound = f"between 1 and {upper}" if upper is not None else ">= 1"
        return None, f"{name} must be {bound}"
    return value, None


async def _read_object(request):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, _bad_request("request body is not valid JSON")
    if not isinstance(payload, dict):
        return None, _bad_request("request body must be a JSON object")
    return payload, None


def setup_routes(app):
    routes = web.RouteTableDef()

    def _model(request, entity):
        return request.app[REGISTRY_KEY][entity]

    @routes.get("/health")
    async def health(request):
        store = request.app[STORE_KEY]
        return _json_response({"ok": True, "db_path": store.db_path, "tables": store.get_tables()})

    @routes.get("/migrations")
    async def migrations(request):
        runner = request.app[RUNNER_KEY]
        return _json_response(
            {
                "current_version": runner.get_current_version(),
                "applied": runner.get_applied_migrations(),
                "pending": [{"version": m.version, "name": m.name} for m in runner.get_pending_migrations()],
            }
        )

    def _register_entity(entity):
        base = f"/api/{entity}"

        async def list_documents(request):
            page, error = _parse_positive_int(request.query.get("page"), 1, "page")
            if error:
                return _bad_request(error)
            limit, error = _parse_positive_int(request.query.get("limit"), DEFAULT_PAGE_LIMIT, "limit", MAX_PAGE_LIMIT)
            if error:
                return _bad_request(error)
            filters = {k: v for k, v in request.query.items() if k not in _LIST_PARAMS and v != ""}
            try:
                result = _model(request, entity).find_with_search(
                    page=page,
                    limit=limit,
                    search=request.query.get("search") or None,
                    order_by=request.query.get("order_by") or "created_at",
                    order_direction=request.query.get("order_direction") or "DESC",
                    filters=filters,
                )
            except QueryError as exc:
                return _bad_request(str(exc))
            return _json_response(result)

        async def get_document(request):
            doc = _model(request, entity).find_by_id(request.match_info["doc_id"])
            if doc is None:
                return _not_found(entity)
            return _json_response(doc)

        async def create_document(request):
            payload, error = await _read_object(request)
            if error:
                return error
            model = _model(request, entity)
            create = getattr(model, "create_with_validation", model.create)
            try:
                doc = create(payload)
            except ConflictError as exc:
                return _json_response({"error": str(exc)}, status=409)
            return _json_response(doc, status=201)

        async def update_document(request):
            payload, error = await _read_object(request)
            if error:
                return error
            model = _model(request, entity)
            update = getattr(model, "update_with_validation", model.update)
            try:
                doc = update(request.match_info["doc_id"], payload)
            except ConflictError as exc:
                return _json_response({"error": str(exc)}, status=409)
            if doc is None:
                return _not_found(entity)
            return _json_response(doc)

        async def delete_document(request):
            doc_id = request.match_info["doc_id"]
            if not _model(request, entity).delete(doc_id):
                return _not_found(entity)
            return _json_response({"deleted": True, "id": doc_id})

        routes.get(base)(list_documents)
        routes.post(base)(create_document)
        routes.get(base + "/{doc_id}")(get_document)
        routes.put(base + "/{doc_id}")(update_document)
        routes.delete(base + "/{doc_id}")(delete_document)

    for entity in CRUD_ENTITIES:
        _register_entity(entity)

    app.add_routes(routes)
    logger.info("API routes registered for %s", ", ".join(CRUD_ENTITIES))
