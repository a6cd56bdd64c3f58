"""
Flask web interface for MoveMatrix.

Serves the REST API used by the composition editor: primitive catalog,
composition CRUD, validation, code generation and deployment.
"""

import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from movematrix_core import __version__
from web_interface.composition_api import register_composition_api


logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

register_composition_api(app)


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({'success': True, 'data': {'status': 'ok', 'version': __version__}})


if __name__ == '__main__':
    logging.basicConfig(
        level=os.environ.get('MOVEMATRIX_LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    host = os.environ.get('MOVEMATRIX_HOST', '0.0.0.0')
    port = int(os.environ.get('MOVEMATRIX_PORT', '5002'))
    debug = os.environ.get('MOVEMATRIX_DEBUG', '0') == '1'

    logger.info(f"Starting MoveMatrix API on http://localhost:{port}")
    app.run(debug=debug, host=host, port=port)
