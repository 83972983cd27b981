from flask import jsonify, request

from nodeagent.errors import InvalidParameterError
from . import bp, cluster_client


def get_service():
    return cluster_client


def _wait_args():
    wait = request.args.get('wait', 'false').lower() == 'true'
    timeout = request.args.get('timeout', type=float)
    if timeout is not None and not timeout > 0:
        raise InvalidParameterError("timeout deve ser maior que zero.")
    return wait, timeout


def _respond(result):
    status = 202 if result.get('status') == 'Accepted' else 200
    return jsonify(result), status


@bp.route('/info', methods=['GET'])
def cluster_info():
    """
    Nome do cluster e total de nós, grupos e recursos.
    ---
    tags:
      - Cluster
    responses:
      200:
        description: Resumo do cluster
    """
    return jsonify(get_service().get_cluster_info())


# --- Nós ---

@bp.route('/nodes', methods=['GET'])
def list_nodes():
    """
    Lista os nós do cluster com o estado de cada um.
    ---
    tags:
      - Cluster
    responses:
      200:
        description: Lista de nós
    """
    return jsonify(get_service().get_nodes())


@bp.route('/nodes/<name>', methods=['GET'])
def get_node(name):
    """
    Estado de um nó.
    ---
    tags:
      - Cluster
    responses:
      200:
        description: Nó
      404:
        description: Nó não encontrado
    """
    return jsonify(get_service().get_node(name))


@bp.route('/nodes/<name>/pause', methods=['POST'])
def pause_node(name):
    """
    Pausa o nó (não recebe novos grupos; os atuais continuam rodando).
    ---
    tags:
      - Cluster
    responses:
      200:
        description: Nó pausado
      202:
        description: Pausa em andamento
      409:
        description: O nó não está Up
    """
    wait, timeout = _wait_args()
    return _respond(get_service().pause_node(name, wait=wait, timeout=timeout))


@bp.route('/nodes/<name>/resume', methods=['POST'])
def resume_node(name):
    """
    Retoma um nó pausado.
    ---
    tags:
      - Cluster
    responses:
      200:
        description: Nó retomado
      202:
        description: Retomada em andamento
    """
    wait, timeout = _wait_args()
    return _respond(get_service().resume_node(name, wait=wait, timeout=timeout))


# --- Grupos ---

@bp.route('/groups', methods=['GET'])
def list_groups():
    """
    Lista os grupos de failover (estado e nó dono).
    ---
    tags:
      - Cluster Groups
    responses:
      200:
        description: Lista de grupos
    """
    return jsonify(get_service().get_groups())


@bp.route('/groups/<name>', methods=['GET'])
def get_group(name):
    """
    Estado e dono de um grupo.
    ---
    tags:
      - Cluster Groups
    responses:
      200:
        description: Grupo
    """
    return jsonify(get_service().get_group(name))


@bp.route('/groups/<name>/online', methods=['POST'])
def online_group(name):
    """
    Coloca o grupo online.
    ---
    tags:
      - Cluster Groups
    responses:
      200:
        description: Grupo online
      202:
        description: Operação pendente no cluster
    """
    wait, timeout = _wait_args()
    return _respond(get_service().online_group(name, wait=wait, timeout=timeout))


@bp.route('/groups/<name>/offline', methods=['POST'])
def offline_group(name):
    """
    Coloca o grupo offline.
    ---
    tags:
      - Cluster Groups
    responses:
      200:
        description: Grupo offline
      202:
        description: Operação pendente no cluster
    """
    wait, timeout = _wait_args()
    return _respond(get_service().offline_group(name, wait=wait, timeout=timeout))


@bp.route('/groups/<name>/move', methods=['POST'])
@bp.route('/groups/<name>/move/<target>', methods=['POST'])
def move_group(name, target=None):
    """
    Move o grupo para outro nó.
    Mover para o dono atual é um no-op bem sucedido.
    ---
    tags:
      - Cluster Groups
    parameters:
      - name: name
        in: path
        type: string
        required: true
      - name: target
        in: path
        type: string
      - in: body
        name: body
        schema:
          type: object
          properties:
            node:
              type: string
    responses:
      200:
        description: Grupo já está no destino (ou movido, com wait=true)
      202:
        description: Move aceito; reconsulte o grupo para ver o resultado
    """
    target = target or (request.get_json(silent=True) or {}).get('node')
    if not target:
        raise InvalidParameterError("Informe o nó de destino.")
    wait, timeout = _wait_args()
    return _respond(get_service().move_group(name, target, wait=wait, timeout=timeout))


# --- Recursos ---

@bp.route('/resources', methods=['GET'])
def list_resources():
    """
    Lista os recursos do cluster.
    ---
    tags:
      - Cluster Resources
    responses:
      200:
        description: Lista de recursos
    """
    return jsonify(get_service().get_resources())


@bp.route('/resources/<name>', methods=['GET'])
def get_resource(name):
    """
    Estado e dono de um recurso.
    ---
    tags:
      - Cluster Resources
    responses:
      200:
        description: Recurso
    """
    return jsonify(get_service().get_resource(name))


@bp.route('/resources/<name>/online', methods=['POST'])
def online_resource(name):
    """
    Coloca o recurso online.
    ---
    tags:
      - Cluster Resources
    responses:
      200:
        description: Recurso online
      202:
        description: Operação pendente (ERROR_IO_PENDING)
    """
    wait, timeout = _wait_args()
    return _respond(get_service().online_resource(name, wait=wait, timeout=timeout))


@bp.route('/resources/<name>/offline', methods=['POST'])
def offline_resource(name):
    """
    Coloca o recurso offline.
    ---
    tags:
      - Cluster Resources
    responses:
      200:
        description: Recurso offline
      202:
        description: Operação pendente (ERROR_IO_PENDING)
    """
    wait, timeout = _wait_args()
    return _respond(get_service().offline_resource(name, wait=wait, timeout=timeout))
