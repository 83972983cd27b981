import logging

from nodeagent.errors import (
    CapabilitiesNotFoundError,
    DefaultTemplateNotFoundError,
    OperationFailedError,
    PoolNotFoundError,
)
from nodeagent.host.base import escape_wql

SUBTYPE_SCSI_CONTROLLER = 'Microsoft:Hyper-V:Synthetic SCSI Controller'
SUBTYPE_DISK_DRIVE = 'Microsoft:Hyper-V:Synthetic Disk Drive'
SUBTYPE_VIRTUAL_DISK = 'Microsoft:Hyper-V:Virtual Hard Disk'
SUBTYPE_GPU_PARTITION = 'Microsoft:Hyper-V:GPU Partition'
SUBTYPE_PCI_EXPRESS = 'Microsoft:Hyper-V:Pci Express'

# Msvm_SettingsDefineCapabilities.ValueRole
VALUE_ROLE_DEFAULT = 0
VALUE_ROLE_SUPPORTED = 1
VALUE_ROLE_MINIMUM = 2
VALUE_ROLE_MAXIMUM = 3
VALUE_ROLE_INCREMENT = 4


class CapabilityNegotiator:
    """
    Caminho pool primordial -> Msvm_AllocationCapabilities -> template default.

    Cada passo é uma função que recebe o resultado do anterior e levanta um erro
    tipado quando falha. Nenhum passo altera o host.
    """

    def __init__(self, host):
        self.host = host
        self.logger = logging.getLogger(__name__)

    def find_primordial_pool(self, subtype):
        pools = self.host.query(
            "SELECT * FROM Msvm_ResourcePool "
            f"WHERE ResourceSubType = '{escape_wql(subtype)}' AND Primordial = TRUE"
        )
        if not pools:
            raise PoolNotFoundError(f"Pool primordial não encontrado para '{subtype}'.")
        return pools[0]

    def get_allocation_capabilities(self, pool):
        capabilities = self.host.associators(
            pool['__PATH'],
            assoc_class='Msvm_ElementCapabilities',
            result_class='Msvm_AllocationCapabilities',
        )
        if not capabilities:
            raise CapabilitiesNotFoundError(
                f"Pool '{pool.get('ResourceSubType')}' não expõe Msvm_AllocationCapabilities."
            )
        return capabilities[0]

    def get_default_template(self, capabilities):
        """Somente a referência com ValueRole default é aceita, sem fallback."""
        references = self.host.references(
            capabilities['__PATH'], result_class='Msvm_SettingsDefineCapabilities'
        )
        for reference in references:
            if reference.get('ValueRole') != VALUE_ROLE_DEFAULT:
                continue
            template = self.host.get_object(reference['PartComponent'])
            if template is not None:
                return template

        raise DefaultTemplateNotFoundError(
            f"Nenhum template default para '{capabilities.get('ResourceSubType')}'."
        )

    def negotiate(self, subtype):
        steps = (
            self.find_primordial_pool,
            self.get_allocation_capabilities,
            self.get_default_template,
        )
        value = subtype
        for step in steps:
            value = step(value)
        self.logger.debug(f"Template default de '{subtype}': {value.get('__PATH')}")
        return value

    def build_settings(self, subtype, overrides=None):
        """Clona o template default e aplica os campos informados pelo chamador."""
        template = self.negotiate(subtype)
        settings = {'__PATH': template['__PATH']}
        settings.update(overrides or {})
        return settings


class CapabilityManager:
    """Mixin que anexa/remove recursos de uma VM a partir dos templates negociados."""

    @property
    def negotiator(self):
        return CapabilityNegotiator(self.connection)

    def _add_resource_settings(self, vm_path, settings, operation, wait=True, timeout=None):
        """
        Submete configurações já negociadas. A negociação deve terminar antes desta chamada,
        assim uma falha nela não deixa nada anexado à VM.
        """
        vssd = self._get_vm_settings(vm_path)
        vsms = self._get_service('Msvm_VirtualSystemManagementService')
        outcome = self.connection.invoke(
            vsms, 'AddResourceSettings',
            AffectedConfiguration=vssd['__PATH'],
            ResourceSettings=settings if isinstance(settings, list) else [settings],
        )
        return self._submit(outcome, operation, wait, timeout)

    def _add_single_resource(self, vm_path, settings, result_class, operation, timeout=None):
        """
        Anexa um único recurso, aguarda o término e retorna o path do RASD criado.

        ResultingResourceSettings só é preenchido quando o host conclui na hora;
        se a chamada virou job, o item novo é o que aparece no VSSD depois dela.
        """
        before = {i['__PATH'] for i in self._get_vm_resources(vm_path, result_class)}
        submission = self._add_resource_settings(vm_path, settings, operation, wait=True, timeout=timeout)

        resulting = submission.result.get('ResultingResourceSettings') if submission.result else None
        if resulting:
            return resulting[0]

        added = [
            i['__PATH'] for i in self._get_vm_resources(vm_path, result_class)
            if i['__PATH'] not in before
        ]
        if not added:
            raise OperationFailedError(f"{operation}: recurso criado não encontrado na VM")
        return added[0]

    def _remove_resource_settings(self, paths, operation, wait=True, timeout=None):
        vsms = self._get_service('Msvm_VirtualSystemManagementService')
        outcome = self.connection.invoke(vsms, 'RemoveResourceSettings', ResourceSettings=list(paths))
        return self._submit(outcome, operation, wait, timeout)

    def add_resource(self, vm_name, subtype, overrides=None, wait=True, timeout=None):
        """Negocia o template de `subtype`, aplica `overrides` e anexa o recurso à VM."""
        settings = self.negotiator.build_settings(subtype, overrides)
        with self.open_vm(vm_name) as vm:
            submission = self._add_resource_settings(
                vm.raw, settings, f"add {subtype} to VM '{vm_name}'", wait, timeout
            )
        self.logger.info(f"VM '{vm_name}': recurso {subtype} {submission.status}")
        return submission
