from nodeagent.errors import InvalidParameterError, NotFoundError
from nodeagent.handles import enumerate_handles, open_handle
from nodeagent.host.base import KIND_SWITCH
from nodeagent.models import VirtualSwitch


class SwitchManager:
    """Mixin de Switches Virtuais (Msvm_VirtualEthernetSwitch)."""

    def get_switches(self):
        switches = []
        for handle in enumerate_handles(self.connection, self.root, KIND_SWITCH):
            with handle:
                data = self.connection.get_object(handle.raw)
            if data is not None:
                switches.append(VirtualSwitch.from_wmi(data).to_dict())
        return {'data': switches, 'count': len(switches)}

    def get_switch(self, name):
        with open_handle(self.connection, self.root, KIND_SWITCH, name) as handle:
            data = self.connection.get_object(handle.raw)
        return VirtualSwitch.from_wmi(data).to_dict()

    def create_switch(self, name, notes=None, wait=True, timeout=None):
        """Cria um switch privado (sem porta externa nem interna)."""
        if not name or not name.strip():
            raise InvalidParameterError("O campo 'name' é obrigatório.")
        try:
            open_handle(self.connection, self.root, KIND_SWITCH, name).close()
        except NotFoundError:
            pass
        else:
            raise InvalidParameterError(f"Já existe um switch chamado '{name}'.")

        settings = {'__CLASS': 'Msvm_VirtualEthernetSwitchSettingData', 'ElementName': name}
        if notes:
            settings['Notes'] = [notes]

        service = self._get_service('Msvm_VirtualEthernetSwitchManagementService')
        outcome = self.connection.invoke(
            service, 'DefineSystem', SystemSettings=settings, ResourceSettings=[]
        )
        submission = self._submit(outcome, f"create switch '{name}'", wait, timeout)
        self.logger.info(f"Switch '{name}': create {submission.status}")
        return dict(submission.to_dict(), message=f"Switch '{name}' criado.")

    def delete_switch(self, name, wait=False, timeout=None):
        service = self._get_service('Msvm_VirtualEthernetSwitchManagementService')
        with open_handle(self.connection, self.root, KIND_SWITCH, name) as handle:
            outcome = self.connection.invoke(service, 'DestroySystem', AffectedSystem=handle.raw)

        submission = self._submit(outcome, f"delete switch '{name}'", wait, timeout)
        return dict(submission.to_dict(), message=f"Switch '{name}' excluído.")
