import json
import logging
import sqlite3

from aiohttp import web

from .constants import APP_NAME, VERSION
from .errors import BadRequest, PictoVaultError

logger = logging.getLogger("PictoVault")

API_PREFIX = "/api/v1"
DEFAULT_NEWEST = 30

ENGINE_KEY = web.AppKey("engine", object)

routes = web.RouteTableDef()


def _json_response(obj, status=200):
    return web.Response(
        status=status,
        text=json.dumps(obj, ensure_ascii=False),
        content_type="application/json",
    )


def _bad_request(msg):
    return _json_response({"error": msg}, status=400)


def _error_response(exc):
    if isinstance(exc, PictoVaultError):
        return _json_response({"error": exc.message}, status=exc.status)
    logger.error("Local store error: %s", exc)
    return _json_response({"error": "Local pictogram store unavailable"}, status=500)


def _engine(request):
    return request.app[ENGINE_KEY]


def _require_user(request):
    user = (request.headers.get("X-User-Id") or "").strip()
    if not user:
        return None, _json_response({"error": "Missing X-User-Id header"}, status=401)
    return user, None


def _path_id(request, name="id"):
    try:
        value = int(request.match_info[name])
    except (TypeError, ValueError):
        raise BadRequest("Invalid pictogram id") from None
    if value <= 0:
        raise BadRequest("Invalid pictogram id")
    return value


async def _read_json(request):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, _bad_request("Invalid JSON body")
    if not isinstance(payload, dict):
        return None, _bad_request("JSON body must be an object")
    return payload, None


# ── health ──


@routes.get(API_PREFIX + "/health")
async def health(request):
    engine = _engine(request)
    return _json_response({"ok": True, "name": APP_NAME, "version": VERSION, "db_path": engine.store.db_path})


# ── pictograms ──


@routes.get(API_PREFIX + "/pictograms/search/{language}/{query}")
async def search_pictograms(request):
    engine = _engine(request)
    language = request.match_info["language"]
    query = request.match_info["query"]
    try:
        items = await engine.search(language, query)
    except (PictoVaultError, sqlite3.Error) as exc:
        logger.warning("Pictogram search failed for %r (%s); returning empty result set", query, exc)
        return _json_response([])
    return _json_response([r.to_dict() for r in items])


@routes.get(API_PREFIX + "/pictograms/new")
async def new_pictograms(request):
    engine = _engine(request)
    lang = request.query.get("lang", "en")
    try:
        n = int(request.query.get("n", DEFAULT_NEWEST))
    except (TypeError, ValueError):
        n = DEFAULT_NEWEST
    try:
        items = await engine.get_newest(lang, n)
    except (PictoVaultError, sqlite3.Error) as exc:
        logger.warning("Fetching new pictograms failed (%s)", exc)
        return _json_response([])
    return _json_response([r.to_dict() for r in items])


@routes.get(API_PREFIX + "/pictograms/keywords")
async def keywords(request):
    engine = _engine(request)
    lang = request.query.get("lang", "en")
    try:
        words = await engine.get_keyword_list(lang)
    except PictoVaultError as exc:
        logger.warning("Fetching ARASAAC keywords failed (%s)", exc)
        return _json_response([])
    return _json_response(words)


# ── saved pictograms ──


@routes.get(API_PREFIX + "/pictograms/saved")
async def list_saved(request):
    user, err = _require_user(request)
    if err:
        return err
    engine = _engine(request)
    lang = request.query.get("lang", "en")
    try:
        items = engine.list_saved(user, lang)
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response([s.to_dict() for s in items])


@routes.get(API_PREFIX + "/pictograms/saved/ids")
async def saved_ids(request):
    user, err = _require_user(request)
    if err:
        return err
    try:
        ids = _engine(request).saved_ids(user)
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response(ids)


@routes.post(API_PREFIX + "/pictograms/saved")
async def save_pictogram(request):
    user, err = _require_user(request)
    if err:
        return err
    payload, err = await _read_json(request)
    if err:
        return err
    label = payload.get("label")
    if label is not None and not isinstance(label, str):
        return _bad_request("label must be a string")
    try:
        _engine(request).save(user, payload.get("arasaac_id"), label)
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response({"ok": True})


@routes.delete(API_PREFIX + "/pictograms/saved/{id}")
async def unsave_pictogram(request):
    user, err = _require_user(request)
    if err:
        return err
    try:
        _engine(request).unsave(user, _path_id(request))
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response({"ok": True})


@routes.post(API_PREFIX + "/pictograms/saved/{id}/use")
async def record_use(request):
    user, err = _require_user(request)
    if err:
        return err
    try:
        _engine(request).record_use(user, _path_id(request))
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response({"ok": True})


@routes.get(API_PREFIX + "/pictograms/{language}/id/{id}")
async def get_pictogram(request):
    engine = _engine(request)
    language = request.match_info["language"]
    try:
        record = await engine.resolve_by_id(language, _path_id(request))
    except (PictoVaultError, sqlite3.Error) as exc:
        logger.warning("Pictogram fetch failed for %s: %s", request.match_info.get("id"), exc)
        return _error_response(exc)
    return _json_response(record.to_dict())


# ── prefetch administration ──


def _settings_payload(engine, settings):
    return settings.to_dict(idle_seconds=engine.idle_seconds())


@routes.get(API_PREFIX + "/admin/pictograms/prefetch")
async def get_prefetch_settings(request):
    engine = _engine(request)
    try:
        settings = engine.get_settings()
    except sqlite3.Error as exc:
        return _error_response(exc)
    return _json_response(_settings_payload(engine, settings))


@routes.put(API_PREFIX + "/admin/pictograms/prefetch")
async def put_prefetch_settings(request):
    engine = _engine(request)
    payload, err = await _read_json(request)
    if err:
        return err
    try:
        settings = engine.update_settings(
            enabled=payload.get("enabled"),
            idle_minutes=payload.get("idle_minutes"),
            batch_size=payload.get("batch_size"),
        )
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response(_settings_payload(engine, settings))


@routes.post(API_PREFIX + "/admin/pictograms/prefetch/run")
async def run_prefetch(request):
    engine = _engine(request)
    try:
        result = await engine.run_now()
    except (PictoVaultError, sqlite3.Error) as exc:
        return _error_response(exc)
    return _json_response(result.to_dict())


def setup_routes(app):
    app.add_routes(routes)
