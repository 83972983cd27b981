from datetime import datetime, timezone

from flask import Blueprint, jsonify
from flask_cors import cross_origin

from nodeagent.services.health import get_system_health

main_bp = Blueprint('main', __name__)


@main_bp.route('/', methods=['GET'])
def index():
    return jsonify({
        "project": "nodeagent",
        "status": "online",
        "documentation": "/docs"
    }), 200


@main_bp.route('/health', methods=['GET'])
@main_bp.route('/api/health', methods=['GET', 'OPTIONS'])
@cross_origin()
def health_check():
    """
    Saúde do agente: host Hyper-V e cluster.
    ---
    tags:
      - Health
    responses:
      200:
        description: Agente saudável
      503:
        description: Algum subsistema indisponível
    """
    report = get_system_health()
    report['server_time'] = datetime.now(timezone.utc).isoformat()
    status = 200 if report['status'] == 'healthy' else 503
    return jsonify(report), status
