"""
HTTP surface for the survey engine.

    POST /api/survey        start a measurement, body = settings JSON
    POST /api/survey/stop   request cancellation of the running measurement
    GET  /api/events        server-sent events carrying progress messages
"""

import json
import logging

from aiohttp import web

from .config import MeasurementSettings
from .errors import SettingsError, SurveyBusyError
from .survey import SurveyRunner

logger = logging.getLogger(__name__)

RUNNER_KEY = web.AppKey('runner', SurveyRunner)


async def start_survey(request: web.Request) -> web.Response:
    runner = request.app[RUNNER_KEY]
    try:
        body = await request.json()
        settings = MeasurementSettings.from_dict(body)
    except (json.JSONDecodeError, AttributeError) as e:
        return web.json_response({'error': f"Invalid request body: {e}"}, status=400)
    except SettingsError as e:
        return web.json_response({'error': str(e)}, status=400)

    try:
        result = await runner.run_survey(settings)
    except SurveyBusyError as e:
        return web.json_response({'error': str(e)}, status=409)
    except Exception as e:
        return web.json_response({'error': str(e), 'status': 'Error taking measurements'},
                                 status=500)
    return web.json_response(result.to_dict())


async def stop_survey(request: web.Request) -> web.Response:
    runner = request.app[RUNNER_KEY]
    return web.json_response({'ok': runner.stop()})


async def stream_events(request: web.Request) -> web.StreamResponse:
    runner = request.app[RUNNER_KEY]
    response = web.StreamResponse(headers={
        'Content-Type': 'text/event-stream',
        'Cache-Control': 'no-cache',
        'Connection': 'keep-alive',
    })
    # Subscribe before the headers go out so a run started by the client
    # right after connecting is seen from its first message.
    queue = runner.channel.subscribe()
    try:
        await response.prepare(request)
        logger.debug("SSE client connected from %s", request.remote)
        while True:
            message = await queue.get()
            if message is None:
                break
            await response.write(f"data: {json.dumps(message.to_dict())}\n\n".encode())
    except ConnectionResetError:
        logger.debug("SSE client %s went away", request.remote)
    finally:
        runner.channel.unsubscribe(queue)
    return response


async def close_event_streams(app: web.Application) -> None:
    app[RUNNER_KEY].channel.close()


def create_app(runner: SurveyRunner) -> web.Application:
    app = web.Application()
    app[RUNNER_KEY] = runner
    app.on_shutdown.append(close_event_streams)
    app.router.add_post('/api/survey', start_survey)
    app.router.add_post('/api/survey/stop', stop_survey)
    app.router.add_get('/api/events', stream_events)
    return app


def serve(runner: SurveyRunner, host: str = '127.0.0.1', port: int = 8080) -> None:
    logger.info("Serving survey API on http://%s:%d", host, port)
    web.run_app(create_app(runner), host=host, port=port, print=None)
