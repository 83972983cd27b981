from nodeagent.errors import InvalidParameterError, InvalidStateError, NotFoundError
from nodeagent.models import VirtualMachine, VmState

# Msvm_ComputerSystem.RequestStateChange
REQUESTED_STATE = {
    'start': 2,
    'resume': 2,
    'force_stop': 3,
    'reset': 11,
    'pause': 32768,
    'save': 32769,
}

# Estados de origem legais para cada operação
TRANSITIONS = {
    'start': {VmState.OFF, VmState.SAVED, VmState.PAUSED},
    'resume': {VmState.PAUSED},
    'stop': {VmState.RUNNING},
    'force_stop': {VmState.RUNNING, VmState.PAUSED, VmState.SAVED},
    'pause': {VmState.RUNNING},
    'save': {VmState.RUNNING, VmState.PAUSED},
    'reset': {VmState.RUNNING},
    'delete': {VmState.OFF, VmState.SAVED},
}

MIN_MEMORY_MB = 32
MAX_MEMORY_MB = 12 * 1024 * 1024
MAX_CPU_COUNT = 240

GENERATION_SUBTYPES = {
    1: 'Microsoft:Hyper-V:SubType:1',
    2: 'Microsoft:Hyper-V:SubType:2',
}


class VMManager:
    """Mixin responsável pelo ciclo de vida das Máquinas Virtuais."""

    def get_vms(self):
        vms = []
        for handle in self.iter_vms():
            with handle:
                data = self.connection.get_object(handle.raw)
            if data is not None:
                vms.append(VirtualMachine.from_wmi(data).to_dict())
        return {'data': vms, 'count': len(vms)}

    def get_vm(self, name):
        data = self._get_vm_object(name)
        vm = VirtualMachine.from_wmi(data)

        vssd = self._get_vm_settings(data['__PATH'])
        subtype = vssd.get('VirtualSystemSubType') or ''
        vm.generation = 2 if subtype.endswith(':2') else 1

        memory = self._get_vm_resources(data['__PATH'], 'Msvm_MemorySettingData')
        if memory:
            vm.memory_mb = int(memory[0].get('VirtualQuantity') or 0)
        processor = self._get_vm_resources(data['__PATH'], 'Msvm_ProcessorSettingData')
        if processor:
            vm.cpu_count = int(processor[0].get('VirtualQuantity') or 0)

        return vm.to_dict()

    def get_vm_state(self, name):
        with self.open_vm(name) as handle:
            code, _ = handle.state()
        return VmState.decode(code)

    def _check_transition(self, handle, operation):
        """Valida o estado observado sem submeter nada ao host."""
        code, _ = handle.state()
        state = VmState.decode(code)
        if state.name not in TRANSITIONS[operation]:
            raise InvalidStateError(
                f"Operação '{operation}' inválida para a VM '{handle.name}' no estado {state}.",
                code=state.code,
            )
        return state

    def _request_state(self, name, operation, wait=False, timeout=None):
        with self.open_vm(name) as handle:
            self._check_transition(handle, operation)
            outcome = self.connection.invoke(
                handle.raw, 'RequestStateChange', RequestedState=REQUESTED_STATE[operation]
            )

        submission = self._submit(outcome, f"{operation} VM '{name}'", wait, timeout)
        self.logger.info(f"VM '{name}': {operation} {submission.status}")
        return dict(submission.to_dict(), vm=name)

    # --- Transições ---

    def start_vm(self, name, wait=False, timeout=None):
        return self._request_state(name, 'start', wait, timeout)

    def resume_vm(self, name, wait=False, timeout=None):
        return self._request_state(name, 'resume', wait, timeout)

    def pause_vm(self, name, wait=False, timeout=None):
        return self._request_state(name, 'pause', wait, timeout)

    def save_vm(self, name, wait=False, timeout=None):
        return self._request_state(name, 'save', wait, timeout)

    def reset_vm(self, name, wait=False, timeout=None):
        return self._request_state(name, 'reset', wait, timeout)

    def force_stop_vm(self, name, wait=False, timeout=None):
        """Desliga a VM imediatamente (equivalente a puxar o cabo)."""
        return self._request_state(name, 'force_stop', wait, timeout)

    def stop_vm(self, name, wait=False, timeout=None, reason='Shutdown requested by nodeagent'):
        """
        Desligamento gracioso via Msvm_ShutdownComponent (integration services do convidado).
        Nunca cai para o force stop: se o componente não existir, a operação falha.
        """
        with self.open_vm(name) as handle:
            self._check_transition(handle, 'stop')
            components = self.connection.associators(
                handle.raw, result_class='Msvm_ShutdownComponent'
            )
            if not components:
                raise InvalidStateError(
                    f"VM '{name}' não expõe o serviço de desligamento do convidado."
                )
            outcome = self.connection.invoke(
                components[0]['__PATH'], 'InitiateShutdown', Force=False, Reason=reason
            )

        submission = self._submit(outcome, f"stop VM '{name}'", wait, timeout)
        self.logger.info(f"VM '{name}': stop {submission.status}")
        return dict(submission.to_dict(), vm=name)

    # --- Criação / Remoção ---

    def create_vm(self, config: dict):
        name = (config.get('name') or '').strip()
        memory_mb = config.get('memory_mb', 1024)
        cpu_count = config.get('cpu_count', 1)
        generation = config.get('generation', 2)

        if not name:
            raise InvalidParameterError("O campo 'name' é obrigatório.")
        if not isinstance(memory_mb, int) or not MIN_MEMORY_MB <= memory_mb <= MAX_MEMORY_MB:
            raise InvalidParameterError(
                f"memory_mb deve estar entre {MIN_MEMORY_MB} e {MAX_MEMORY_MB}."
            )
        if not isinstance(cpu_count, int) or not 1 <= cpu_count <= MAX_CPU_COUNT:
            raise InvalidParameterError(f"cpu_count deve estar entre 1 e {MAX_CPU_COUNT}.")
        if generation not in GENERATION_SUBTYPES:
            raise InvalidParameterError("generation deve ser 1 ou 2.")

        try:
            self.open_vm(name).close()
        except NotFoundError:
            pass
        else:
            raise InvalidParameterError(f"Já existe uma VM chamada '{name}'.")

        vsms = self._get_service('Msvm_VirtualSystemManagementService')
        outcome = self.connection.invoke(
            vsms, 'DefineSystem',
            SystemSettings={
                '__CLASS': 'Msvm_VirtualSystemSettingData',
                'ElementName': name,
                'VirtualSystemSubType': GENERATION_SUBTYPES[generation],
            },
        )
        submission = self._submit(outcome, f"create VM '{name}'", wait=True)
        vm_path = submission.result.get('ResultingSystem')
        if not vm_path:
            vm_path = self._get_vm_object(name)['__PATH']

        memory = self._get_vm_resources(vm_path, 'Msvm_MemorySettingData')[0]
        processor = self._get_vm_resources(vm_path, 'Msvm_ProcessorSettingData')[0]
        outcome = self.connection.invoke(
            vsms, 'ModifyResourceSettings',
            ResourceSettings=[
                {'__PATH': memory['__PATH'], 'VirtualQuantity': memory_mb},
                {'__PATH': processor['__PATH'], 'VirtualQuantity': cpu_count},
            ],
        )
        self._submit(outcome, f"configure VM '{name}'", wait=True)

        self.logger.info(f"VM '{name}' criada ({memory_mb} MB, {cpu_count} vCPU, gen {generation}).")
        return {'name': name, 'message': f"VM '{name}' criada."}

    def delete_vm(self, name, wait=False, timeout=None):
        with self.open_vm(name) as handle:
            self._check_transition(handle, 'delete')
            vsms = self._get_service('Msvm_VirtualSystemManagementService')
            outcome = self.connection.invoke(vsms, 'DestroySystem', AffectedSystem=handle.raw)

        submission = self._submit(outcome, f"delete VM '{name}'", wait, timeout)
        self.logger.info(f"VM '{name}': delete {submission.status}")
        return dict(submission.to_dict(), vm=name)
