from flask import jsonify, request

from nodeagent.errors import InvalidParameterError
from . import bp, hyperv_client


def get_service():
    return hyperv_client


def _wait_args():
    """?wait=true bloqueia até o job terminar; ?timeout=N limita a espera (segundos)."""
    wait = request.args.get('wait', 'false').lower() == 'true'
    timeout = request.args.get('timeout', type=float)
    if timeout is not None and not timeout > 0:
        raise InvalidParameterError("timeout deve ser maior que zero.")
    return wait, timeout


def _respond(result):
    # 202 quando o host aceitou a operação mas ela ainda está em execução
    status = 202 if result.get('status') == 'Accepted' else 200
    return jsonify(result), status


def _require(data, field):
    value = data.get(field)
    if value in (None, ''):
        raise InvalidParameterError(f"O campo '{field}' é obrigatório.")
    return value


# --- Rotas VMs ---

@bp.route('/vms', methods=['GET'])
def list_vms():
    """
    Lista as Máquinas Virtuais do host.
    ---
    tags:
      - Hyper-V VMs
    responses:
      200:
        description: Lista de VMs com estado
    """
    return jsonify(get_service().get_vms())


@bp.route('/vms', methods=['POST'])
def create_vm():
    """
    Cria uma VM.
    ---
    tags:
      - Hyper-V VMs
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
              example: "web-01"
            memory_mb:
              type: integer
              example: 4096
            cpu_count:
              type: integer
              example: 2
            generation:
              type: integer
              example: 2
    responses:
      201:
        description: VM criada
      400:
        description: Parâmetros inválidos
    """
    data = request.get_json() or {}
    return jsonify(get_service().create_vm(data)), 201


@bp.route('/vms/<name>', methods=['GET'])
def get_vm(name):
    """
    Detalhes de uma VM (estado, memória, vCPUs, geração).
    ---
    tags:
      - Hyper-V VMs
    parameters:
      - name: name
        in: path
        type: string
        required: true
    responses:
      200:
        description: Dados da VM
      404:
        description: VM não encontrada
    """
    return jsonify(get_service().get_vm(name))


@bp.route('/vms/<name>', methods=['DELETE'])
def delete_vm(name):
    """
    Remove uma VM desligada ou salva.
    ---
    tags:
      - Hyper-V VMs
    parameters:
      - name: name
        in: path
        type: string
        required: true
      - name: wait
        in: query
        type: boolean
    responses:
      200:
        description: VM removida
      202:
        description: Remoção em andamento
      409:
        description: Estado atual não permite a remoção
    """
    wait, timeout = _wait_args()
    return _respond(get_service().delete_vm(name, wait=wait, timeout=timeout))


_LIFECYCLE = {
    'start': 'start_vm',
    'stop': 'stop_vm',
    'force-stop': 'force_stop_vm',
    'pause': 'pause_vm',
    'resume': 'resume_vm',
    'save': 'save_vm',
    'reset': 'reset_vm',
}


@bp.route('/vms/<name>/<action>', methods=['POST'])
def vm_action(name, action):
    """
    Transição de estado da VM.
    O estado atual é validado antes de qualquer chamada ao host.
    ---
    tags:
      - Hyper-V VMs
    parameters:
      - name: name
        in: path
        type: string
        required: true
      - name: action
        in: path
        type: string
        required: true
        enum: [start, stop, force-stop, pause, resume, save, reset]
      - name: wait
        in: query
        type: boolean
        description: Aguarda o job terminar
      - name: timeout
        in: query
        type: number
    responses:
      200:
        description: Operação concluída
      202:
        description: Operação aceita pelo host (job em andamento)
      409:
        description: Transição inválida para o estado atual
    """
    method = _LIFECYCLE.get(action)
    if method is None:
        raise InvalidParameterError(f"Ação desconhecida: {action}")
    wait, timeout = _wait_args()
    return _respond(getattr(get_service(), method)(name, wait=wait, timeout=timeout))


# --- Rotas Snapshots ---

@bp.route('/vms/<name>/snapshots', methods=['GET'])
def list_snapshots(name):
    """
    Lista os snapshots (checkpoints) de uma VM.
    ---
    tags:
      - Hyper-V Snapshots
    parameters:
      - name: name
        in: path
        type: string
        required: true
    responses:
      200:
        description: Lista de snapshots
    """
    return jsonify(get_service().get_snapshots(name))


@bp.route('/vms/<name>/snapshots', methods=['POST'])
def create_snapshot(name):
    """
    Cria um snapshot da VM.
    ---
    tags:
      - Hyper-V Snapshots
    parameters:
      - name: name
        in: path
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            name:
              type: string
              example: "antes-do-deploy"
    responses:
      201:
        description: Snapshot criado
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().create_snapshot(name, data.get('name'), timeout=timeout)), 201


@bp.route('/vms/<name>/snapshots/<snapname>', methods=['GET'])
def get_snapshot(name, snapname):
    """
    Detalhes de um snapshot.
    ---
    tags:
      - Hyper-V Snapshots
    responses:
      200:
        description: Dados do snapshot
    """
    return jsonify(get_service().get_snapshot(name, snapname))


@bp.route('/vms/<name>/snapshots/<snapname>/apply', methods=['POST'])
def apply_snapshot(name, snapname):
    """
    Aplica (rollback) um snapshot. A VM precisa estar desligada ou salva.
    ---
    tags:
      - Hyper-V Snapshots
    responses:
      200:
        description: Rollback concluído
      202:
        description: Rollback em andamento
    """
    wait, timeout = _wait_args()
    return _respond(get_service().apply_snapshot(name, snapname, wait=wait, timeout=timeout))


@bp.route('/vms/<name>/snapshots/<snapname>', methods=['DELETE'])
def delete_snapshot(name, snapname):
    """
    Remove um snapshot.
    ---
    tags:
      - Hyper-V Snapshots
    responses:
      200:
        description: Snapshot removido
      202:
        description: Remoção em andamento
    """
    wait, timeout = _wait_args()
    return _respond(get_service().delete_snapshot(name, snapname, wait=wait, timeout=timeout))


# --- Rotas Switches ---

@bp.route('/switches', methods=['GET'])
def list_switches():
    """
    Lista os switches virtuais.
    ---
    tags:
      - Hyper-V Network
    responses:
      200:
        description: Lista de switches
    """
    return jsonify(get_service().get_switches())


@bp.route('/switches', methods=['POST'])
def create_switch():
    """
    Cria um switch privado.
    ---
    tags:
      - Hyper-V Network
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
              example: "lab-private"
            notes:
              type: string
    responses:
      201:
        description: Switch criado
    """
    data = request.get_json() or {}
    return jsonify(get_service().create_switch(_require(data, 'name'), data.get('notes'))), 201


@bp.route('/switches/<name>', methods=['GET'])
def get_switch(name):
    """
    Detalhes de um switch.
    ---
    tags:
      - Hyper-V Network
    responses:
      200:
        description: Dados do switch
    """
    return jsonify(get_service().get_switch(name))


@bp.route('/switches/<name>', methods=['DELETE'])
def delete_switch(name):
    """
    Remove um switch.
    ---
    tags:
      - Hyper-V Network
    responses:
      200:
        description: Switch removido
    """
    wait, timeout = _wait_args()
    return _respond(get_service().delete_switch(name, wait=wait, timeout=timeout))


# --- Rotas Discos ---

@bp.route('/vhds', methods=['GET'])
def get_vhd():
    """
    Inspeciona um VHD/VHDX pelo caminho.
    ---
    tags:
      - Hyper-V Storage
    parameters:
      - name: path
        in: query
        type: string
        required: true
        example: "D:\\\\VMs\\\\web-01.vhdx"
    responses:
      200:
        description: Dados do disco
    """
    return jsonify(get_service().get_vhd(_require(request.args, 'path')))


@bp.route('/vhds', methods=['POST'])
def create_vhd():
    """
    Cria um VHD/VHDX.
    ---
    tags:
      - Hyper-V Storage
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            path:
              type: string
            size_gb:
              type: integer
              example: 40
            type:
              type: string
              enum: [Dynamic, Fixed]
    responses:
      200:
        description: Disco criado
      202:
        description: Criação em andamento
    """
    data = request.get_json() or {}
    wait, timeout = _wait_args()
    return _respond(get_service().create_vhd(
        _require(data, 'path'), _require(data, 'size_gb'),
        disk_type=data.get('type', 'Dynamic'), disk_format=data.get('format'),
        wait=wait, timeout=timeout,
    ))


@bp.route('/vms/<name>/disks', methods=['GET'])
def list_vm_disks(name):
    """
    Lista os discos anexados à VM.
    ---
    tags:
      - Hyper-V Storage
    responses:
      200:
        description: Discos da VM
    """
    return jsonify(get_service().get_vm_disks(name))


@bp.route('/vms/<name>/disks', methods=['POST'])
def attach_vhd(name):
    """
    Anexa um VHD existente à VM (controlador SCSI).
    ---
    tags:
      - Hyper-V Storage
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            path:
              type: string
    responses:
      200:
        description: Disco anexado
      422:
        description: Falha na negociação de capacidades
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().attach_vhd(name, _require(data, 'path'), timeout=timeout))


@bp.route('/vms/<name>/disks', methods=['DELETE'])
def detach_vhd(name):
    """
    Remove um disco da VM (o arquivo é mantido).
    ---
    tags:
      - Hyper-V Storage
    responses:
      200:
        description: Disco removido
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().detach_vhd(name, _require(data, 'path'), timeout=timeout))


# --- Rotas GPU ---

@bp.route('/gpus', methods=['GET'])
def list_gpus():
    """
    Inventário de GPUs do host.
    ---
    tags:
      - Hyper-V GPU
    responses:
      200:
        description: GPUs (com dados de particionamento quando suportado)
    """
    return jsonify(get_service().list_gpus())


@bp.route('/gpus/partitionable', methods=['GET'])
def list_partitionable_gpus():
    """
    GPUs que suportam particionamento (GPU-P).
    ---
    tags:
      - Hyper-V GPU
    responses:
      200:
        description: GPUs particionáveis
    """
    return jsonify(get_service().list_partitionable_gpus())


@bp.route('/vms/<name>/gpu', methods=['GET'])
def list_vm_gpu(name):
    """
    Partições de GPU da VM.
    ---
    tags:
      - Hyper-V GPU
    responses:
      200:
        description: Partições
    """
    return jsonify(get_service().get_vm_gpu_partitions(name))


@bp.route('/vms/<name>/gpu', methods=['POST'])
def add_vm_gpu(name):
    """
    Adiciona uma partição de GPU à VM (desligada).
    ---
    tags:
      - Hyper-V GPU
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            gpu_id:
              type: string
              description: PNPDeviceID da GPU (opcional)
            min_vram:
              type: integer
            max_vram:
              type: integer
            optimal_vram:
              type: integer
    responses:
      200:
        description: Partição adicionada
      409:
        description: Capacidade da GPU esgotada ou VM ligada
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().add_gpu_partition(
        name,
        gpu_id=data.get('gpu_id'),
        min_vram=data.get('min_vram'),
        max_vram=data.get('max_vram'),
        optimal_vram=data.get('optimal_vram'),
        timeout=timeout,
    ))


@bp.route('/vms/<name>/gpu', methods=['DELETE'])
def remove_vm_gpu(name):
    """
    Remove partições de GPU da VM.
    ---
    tags:
      - Hyper-V GPU
    parameters:
      - name: partition_id
        in: query
        type: string
    responses:
      200:
        description: Partições removidas
    """
    _, timeout = _wait_args()
    return jsonify(get_service().remove_gpu_partition(
        name, request.args.get('partition_id'), timeout=timeout
    ))


# --- Rotas DDA ---

@bp.route('/dda/devices', methods=['GET'])
def list_assignable_devices():
    """
    Dispositivos desmontados do host (livres ou atribuídos).
    ---
    tags:
      - Hyper-V DDA
    responses:
      200:
        description: Dispositivos
    """
    return jsonify(get_service().get_assignable_devices())


@bp.route('/dda/dismount', methods=['POST'])
def dismount_device():
    """
    Desmonta um dispositivo do host para DDA.
    ---
    tags:
      - Hyper-V DDA
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            instance_path:
              type: string
    responses:
      200:
        description: Dispositivo desmontado
    """
    data = request.get_json() or {}
    wait, timeout = _wait_args()
    return _respond(get_service().dismount_device(
        _require(data, 'instance_path'), wait=wait, timeout=timeout
    ))


@bp.route('/dda/mount', methods=['POST'])
def mount_device():
    """
    Devolve um dispositivo desmontado ao host.
    ---
    tags:
      - Hyper-V DDA
    responses:
      200:
        description: Dispositivo montado
    """
    data = request.get_json() or {}
    wait, timeout = _wait_args()
    return _respond(get_service().mount_device(
        _require(data, 'instance_path'), wait=wait, timeout=timeout
    ))


@bp.route('/vms/<name>/mmio', methods=['POST'])
def configure_mmio(name):
    """
    Configura os gaps de MMIO da VM (necessário antes do primeiro DDA).
    ---
    tags:
      - Hyper-V DDA
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            low_mmio_mb:
              type: integer
              example: 128
            high_mmio_gb:
              type: integer
              example: 32
    responses:
      200:
        description: MMIO configurado
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().configure_mmio(
        name,
        low_mmio_mb=data.get('low_mmio_mb', 128),
        high_mmio_gb=data.get('high_mmio_gb', 32),
        timeout=timeout,
    ))


@bp.route('/vms/<name>/dda', methods=['GET'])
def list_vm_devices(name):
    """
    Dispositivos atribuídos à VM.
    ---
    tags:
      - Hyper-V DDA
    responses:
      200:
        description: Dispositivos
    """
    return jsonify(get_service().get_vm_devices(name))


@bp.route('/vms/<name>/dda', methods=['POST'])
def assign_device(name):
    """
    Atribui um dispositivo desmontado à VM.
    ---
    tags:
      - Hyper-V DDA
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            instance_path:
              type: string
    responses:
      200:
        description: Dispositivo atribuído
      403:
        description: Dispositivo ainda montado no host
      409:
        description: MMIO não configurado ou VM ligada
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().assign_device(name, _require(data, 'instance_path'), timeout=timeout))


@bp.route('/vms/<name>/dda', methods=['DELETE'])
def remove_device(name):
    """
    Remove um dispositivo da VM.
    ---
    tags:
      - Hyper-V DDA
    responses:
      200:
        description: Dispositivo removido
    """
    data = request.get_json() or {}
    _, timeout = _wait_args()
    return jsonify(get_service().remove_device(name, _require(data, 'instance_path'), timeout=timeout))


# --- Jobs ---

@bp.route('/jobs', methods=['GET'])
def get_job():
    """
    Estado de um job do host.
    ---
    tags:
      - Hyper-V Jobs
    parameters:
      - name: path
        in: query
        type: string
        required: true
        description: Path WMI devolvido na submissão
    responses:
      200:
        description: Status, progresso e erro (se houver)
    """
    return jsonify(get_service().get_job(_require(request.args, 'path')))
