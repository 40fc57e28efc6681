"""clamd gateway is a REST interface for a ClamAV daemon on TCP socket.

The ClamAV daemon (clamd) is reached over TCP, the protocol client
lives in the ``clamd`` subpackage and can be used on its own.

Configuration: all configuration is managed through environment
variables.  All environment variables starting with "CLAMAV_" prefix
are loaded into the application.

No authentication of any type is implemented whatsoever: be sure that
your gateway is adequately protected, scan-path in particular lets
callers scan any path readable by clamd.

The following variables are accepted:

 - CLAMAV_CLAMD_HOST : host of clamd, default 127.0.0.1
 - CLAMAV_CLAMD_PORT : TCP port of clamd, default 3310
 - CLAMAV_CLAMD_TIMEOUT : socket timeout in seconds, default 300
 - CLAMAV_CHUNK_SIZE : size of the chunks streamed to clamd, default 4096
 - CLAMAV_INCLUDE_RAW_DATA : include clamd raw replies in responses

"""
import logging

from flask import Flask, jsonify, request
from flask_swagger import swagger
from werkzeug.exceptions import BadRequest, HTTPException

from .clamd import ClamdTCPSocket, \
    ClamdScanError, \
    ClamdScanFound, \
    ClamdScanResult, \
    ClamdIOError, \
    ClamdParseError, \
    ClamdCommandError

##
# Init app and config
##

app = Flask(__name__)

app.config.update({
    "CLAMD_HOST": "127.0.0.1",
    "CLAMD_PORT": 3310,
    "CLAMD_TIMEOUT": 300,
    "CHUNK_SIZE": 4096,
})
# load all env starting with CLAMAV_ and make them available in
# app.config without CLAMAV_
app.config.from_prefixed_env("CLAMAV")

# fix gunicorn logging
if __name__ != '__main__':
    gunicorn_logger = logging.getLogger('gunicorn.error')
    app.logger.handlers = gunicorn_logger.handlers[:]
    app.logger.setLevel(gunicorn_logger.level)
    app.logger.propagate = False

##
# API
##


@app.route("/api/v1/doc")
def api_doc():
    """OpenAPI spec of the v1 API.
    """
    swag = swagger(app)
    swag['info']['version'] = "1.0"
    swag['info']['title'] = "clamd gateway"
    swag['info']['description'] = \
        "File scanning with a ClamAV daemon on TCP via REST API"
    return jsonify(swag)


@app.route("/health", methods=["GET"])
@app.route("/api/v1/clamav/ping", methods=["GET"])
def ping():
    """Ping clamav ensuring connection is up.
    ---
    tags:
      - status
    responses:
      200:
        description: Pong
        content: application/json
        schema:
          type: object
          properties:
            status:
              type: string
              description: Status of the ping
              example: OK
            message:
              type: string
              description: Outcome of the ping
              example: PONG
      503:
        description: clamd is not answering
    """
    app.logger.debug("Pinging clamd...")
    try:
        pong = clamd_instance().ping()
    except ClamdIOError as e:
        app.logger.warning("Unable to ping clamd: %s", str(e))
        return {"status": "KO", "message": str(e)}, 503

    if pong:
        return {"status": "OK", "message": "PONG"}, 200
    return {"status": "KO", "message": "Unexpected reply to PING"}, 503


@app.route("/api/v1/clamav/scan", methods=["POST"])
def scan_file():
    """Scan a file attached to the request.
    ---
    tags:
      - scan
    parameters:
      - in: formData
        name: file
        description: File to scan
        required: true
    responses:
      200:
        description: Scanning result
        content: application/json
        schema:
          type: object
          properties:
            status:
              type: string
              description: Status of the scanning {OK,FOUND,ERROR}
              example: FOUND
            input_file:
              type: string
              description: Input file that was scanned
              example: myfile.txt
            virus:
              type: string
              description: Virus found, if any
              example: Name-Of-Virus-Found
            error:
              type: string
              description: Error reported by clamd, if any
            file_size:
              type: integer
              description: Size of the file scanned in bytes
              example: 256
    """
    if 'file' not in request.files:
        return {"error": "No file attached"}, 400
    file_to_analyze = request.files['file']
    filename = file_to_analyze.filename
    # sanitize filename to prevent log injection
    safe_filename = (filename or "").replace('\r', '').replace('\n', '')

    app.logger.debug("Starting scan for file \"%s\"", safe_filename)
    result = clamd_instance().scan_stream(file_to_analyze.stream)

    # the file pointer is at the end of the stream, so tell() will
    # give us the size in bytes
    file_size = file_to_analyze.stream.tell()
    resp_body = scan_result_body(result)
    app.logger.info("Scanned file \"%s\" (%d bytes) with status %s - %s",
                    safe_filename, file_size, result.status.value,
                    resp_body["virus"] or "no virus")

    # the location is always "stream" as returned by clamd INSTREAM
    # command, use what the client told us about the file for a more
    # significative response to the user
    resp_body["input_file"] = filename
    resp_body["file_size"] = file_size
    return resp_body, 200


@app.route("/api/v1/clamav/scan-path", methods=["POST"])
def scan_path():
    """Scan a file or directory on the clamd host.
    ---
    tags:
      - scan
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - path
          properties:
            path:
              type: string
              description: Absolute path, as seen by clamd
              example: /srv/uploads
            recursive:
              type: boolean
              description: Keep on scanning after a virus is found
            parallel:
              type: boolean
              description: Let clamd scan with several threads
    responses:
      200:
        description: One scanning result per file reported by clamd
        content: application/json
        schema:
          type: object
          properties:
            results:
              type: array
              items:
                type: object
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not isinstance(body.get("path"), str):
        raise BadRequest("JSON body with a \"path\" string is required")

    results = clamd_instance().scan_path(
        body["path"],
        recursive=json_bool(body, "recursive"),
        parallel=json_bool(body, "parallel"),
    )
    found = [r for r in results if isinstance(r, ClamdScanFound)]
    app.logger.info("Scanned path with %d results, %d found",
                    len(results), len(found))
    return {"results": [scan_result_body(r) for r in results]}


@app.route("/api/v1/clamav/stats", methods=["GET"])
def stats():
    """Get clamav stats.
    ---
    tags:
      - status
    responses:
      200:
        description: ClamAV stats
        content: application/json
        schema:
          type: object
          properties:
            state:
              type: string
              example: VALID PRIMARY
            queue:
              type: integer
            threads_live:
              type: integer
            threads_max:
              type: integer
    """
    app.logger.debug("Requesting clamd stats...")
    clamd_stats = clamd_instance().stats()
    body = vars(clamd_stats).copy()
    if not config_bool("INCLUDE_RAW_DATA"):
        del body["raw_data"]
    return body


@app.route("/api/v1/clamav/version", methods=["GET"])
def clamav_version():
    """Get version of connected clamav instance.
    ---
    tags:
      - status
    responses:
      200:
        description: ClamAV version
        content: application/json
        schema:
          type: object
          properties:
            version_tag:
              type: string
              example: ClamAV 1.4.2
            build_number:
              type: integer
              description: Version of the signature database
              example: 27500
            release_date:
              type: string
              description: Release date of the signature database
    """
    version = clamd_instance().version()
    return {
        "version_tag": version.version_tag,
        "build_number": version.build_number,
        "release_date": version.release_date.isoformat()
        if version.release_date else None,
    }


##
# Error handlers
##


@app.errorhandler(ClamdIOError)
def handle_clamd_io_error(e):
    """clamd cannot be reached: the client may retry later.
    """
    app.logger.error("clamd unreachable: %s", str(e))
    return {"error": str(e)}, 503


@app.errorhandler(ClamdParseError)
def handle_clamd_parse_error(e):
    """clamd replied something we do not understand.
    """
    app.logger.error("Unable to parse clamd response. Raw response: %r",
                     e.raw_data)
    return {"error": str(e)}, 502


@app.errorhandler(ClamdCommandError)
def handle_clamd_command_error(e):
    """Invalid path or command, the caller must fix the request.
    """
    return {"error": str(e)}, 400


@app.errorhandler(HTTPException)
def handle_http_exception(e):
    """Handle an HTTP exception and return JSON.
    """
    str_e = str(e)
    if e.code not in [400, 404, 405, 415]:
        # don't pollute logs, these statuses does not concern us
        app.logger.exception("HTTP exception: %s", str_e)
    return {"error": str_e}, e.code


@app.errorhandler(Exception)
def handle_exception(e):
    """Handle an generic exception and return JSON.
    """
    str_e = str(e)
    app.logger.exception("Generic exception: %s", str_e)
    return {"error": str_e}, 500


##
# Helpers
##


def clamd_instance() -> ClamdTCPSocket:
    """Get a clamd client based on app config.
    """
    # remember, these are env variables prefixed with CLAMAV_
    return ClamdTCPSocket(
        host=app.config["CLAMD_HOST"],
        port=int(app.config["CLAMD_PORT"]),
        timeout=float(app.config["CLAMD_TIMEOUT"]),
        chunk_size=int(app.config["CHUNK_SIZE"]),
    )


def scan_result_body(result: ClamdScanResult) -> dict:
    """JSON body of a single scan result.
    """
    virus = err_msg = None
    match result:
        case ClamdScanFound():
            virus = result.virus
        case ClamdScanError():
            err_msg = result.err_msg

    body = {
        "status": result.status.value,
        "input_file": result.location,
        "virus": virus,
        "error": err_msg,
    }
    if config_bool("INCLUDE_RAW_DATA"):
        app.logger.warning("Including raw data in scan response. "
                           "Use this option only for debugging")
        body["raw_data"] = result.raw_data
    return body


def json_bool(body: dict, name: str) -> bool:
    """Get an optional boolean from a JSON body, false when missing.
    """
    val = body.get(name, False)
    if not isinstance(val, bool):
        raise BadRequest(f"\"{name}\" must be a JSON boolean")
    return val


def config_bool(env_name: str) -> bool:
    """Given a config var name, try to parse as boolean.
    """
    val = str(app.config.get(env_name, "false")).strip().lower()
    return val in ["true", "1", "enable", "enabled"]


##
# DEV runner
##

if __name__ == "__main__":
    # don't run directly in prod, use a production grade wsgi server
    # like gunicorn
    app.run(host="0.0.0.0", port=8080, debug=True)
