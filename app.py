import logging
from typing import Optional

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import NotFound

from config import Config
from points import score
from receipts import InvalidReceiptError, decode_receipt, is_valid
from store import ReceiptStore, new_id

logger = logging.getLogger(__name__)

INVALID_RECEIPT_MESSAGE = "The receipt is invalid. Please verify input."
RECEIPT_NOT_FOUND_MESSAGE = "No receipt found for that ID."
PLAIN_TEXT_HEADERS = {"Content-Type": "text/plain; charset=utf-8"}
STORE_EXTENSION = "receipt_store"


def _plain_error(message: str, status: int):
    return f"{message}\n", status, PLAIN_TEXT_HEADERS


def _receipt_store() -> ReceiptStore:
    return current_app.extensions[STORE_EXTENSION]


def process_receipt():
    """
    Router for receipt processing requests. The body is decoded and validated, points
    are calculated, and the points are stored under a freshly generated id which is
    returned to the user.

    Returns:
        400 and a fixed plain text message if the body is not a valid receipt
        200 OK and the generated receipt id otherwise
    """
    payload = request.get_json(force=True, silent=True)
    try:
        receipt = decode_receipt(payload)
    except InvalidReceiptError as e:
        logger.info("Rejected receipt that could not be decoded: %s", e)
        return _plain_error(INVALID_RECEIPT_MESSAGE, 400)
    if not is_valid(receipt):
        logger.info("Rejected receipt that failed validation")
        return _plain_error(INVALID_RECEIPT_MESSAGE, 400)

    points = score(receipt)
    receipts = _receipt_store()
    receipt_id = new_id()
    while not receipts.put(receipt_id, points):
        logger.warning("Generated receipt id %s already in use, retrying", receipt_id)
        receipt_id = new_id()
    logger.info("Stored receipt %s with %d points", receipt_id, points)
    return jsonify({"id": receipt_id})


def get_points(receipt_id: str):
    """
    Router for points lookups by receipt id.

    Returns:
        404 and a fixed plain text message if the receipt id is unknown
        200 OK and the stored points otherwise
    """
    if request.method != "GET":
        # flask answers HEAD on every GET rule; only GET is routed here
        return NotFound()
    points, found = _receipt_store().get(receipt_id)
    if not found:
        logger.debug("No receipt found for id %s", receipt_id)
        return _plain_error(RECEIPT_NOT_FOUND_MESSAGE, 404)
    return jsonify({"points": points})


def method_not_allowed(e):
    # a known path hit with the wrong method is a routing miss, same as an unknown path
    return NotFound()


def create_app(store: Optional[ReceiptStore] = None, config: Optional[dict] = None) -> Flask:
    """ Builds the service around the given store, or a new empty one """
    flask_app = Flask(__name__)
    flask_app.config.from_object(Config)
    if config:
        flask_app.config.update(config)
    flask_app.extensions[STORE_EXTENSION] = store if store is not None else ReceiptStore()

    flask_app.url_map.merge_slashes = False
    flask_app.add_url_rule('/receipts/process', view_func=process_receipt, methods=['POST'],
                           provide_automatic_options=False)
    flask_app.add_url_rule('/receipts/<receipt_id>/points', view_func=get_points, methods=['GET'],
                           provide_automatic_options=False)
    flask_app.register_error_handler(405, method_not_allowed)
    return flask_app


def main(config: Optional[dict] = None):
    flask_app = create_app(config=config)
    settings = flask_app.config
    logging.basicConfig(level=settings["LOG_LEVEL"], format=settings["LOG_FORMAT"])
    logger.info("Starting server on http://localhost:%d...", settings["PORT"])
    flask_app.run(host=settings["HOST"], port=settings["PORT"], threaded=settings["THREADED"])


if __name__ == '__main__':
    main()
