from nodeagent.host.base import KIND_RESOURCE
from nodeagent.jobs import Submission
from nodeagent.models import ResourceInfo, ResourceState

ONLINE_FROM = {ResourceState.OFFLINE, ResourceState.FAILED}
OFFLINE_FROM = {ResourceState.ONLINE, ResourceState.FAILED}


class ResourceManager:
    """Mixin de recursos do cluster."""

    def get_resources(self):
        resources = []
        for handle in self._iter(KIND_RESOURCE):
            with handle:
                state, owner = self._observe(handle, ResourceState)
            resources.append(ResourceInfo(handle.name, state, owner).to_dict())
        return {'data': resources, 'count': len(resources)}

    def get_resource(self, name):
        with self._open(KIND_RESOURCE, name) as handle:
            state, owner = self._observe(handle, ResourceState)
        return ResourceInfo(name, state, owner).to_dict()

    def get_resource_state(self, name):
        with self._open(KIND_RESOURCE, name) as handle:
            return self._observe(handle, ResourceState)

    def _resource_transition(self, name, operation, allowed, expected, wait, timeout):
        with self._open(KIND_RESOURCE, name) as handle:
            state, _ = self._observe(handle, ResourceState)
            self._check_transition(handle, state, operation, allowed)
            submission = self._control(handle, operation)

        if wait and submission.accepted:
            self._wait_for_state(KIND_RESOURCE, name, ResourceState,
                                 lambda s, _: s.name == expected, timeout, state)
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), resource=name)

    def online_resource(self, name, wait=False, timeout=None):
        return self._resource_transition(name, 'online', ONLINE_FROM, ResourceState.ONLINE,
                                         wait, timeout)

    def offline_resource(self, name, wait=False, timeout=None):
        return self._resource_transition(name, 'offline', OFFLINE_FROM, ResourceState.OFFLINE,
                                         wait, timeout)
