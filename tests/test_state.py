# tests/test_state.py
import pytest

from nodeagent.models import GroupInfo, GroupState, NodeState, ResourceState, VmState


@pytest.mark.parametrize('state_type, code, expected', [
    (VmState, 2, 'Running'),
    (VmState, 3, 'Off'),
    (VmState, 4, 'Stopping'),
    (VmState, 32769, 'Saved'),
    (VmState, 32779, 'Saved'),
    (GroupState, 3, 'PartialOnline'),
    (ResourceState, 129, 'OnlinePending'),
    (NodeState, 2, 'Paused'),
])
def test_known_codes(state_type, code, expected):
    state = state_type.decode(code)

    assert state == expected
    assert state.code == code
    assert not state.is_unknown


@pytest.mark.parametrize('state_type', [VmState, GroupState, ResourceState, NodeState])
@pytest.mark.parametrize('code', [-1, 999, 32783, None])
def test_unrecognized_codes_decode_to_unknown(state_type, code):
    state = state_type.decode(code)

    assert state.is_unknown
    assert str(state) == f"Unknown({code})"


def test_unknown_states_compare_by_code():
    assert VmState.decode(32783) == VmState.decode(32783)
    assert VmState.decode(32783) != VmState.decode(32771)
    assert VmState.decode(2) != GroupState.decode(0)


def test_group_owner_dropped_when_state_unknown():
    info = GroupInfo('SQL', GroupState.decode(77), owner='node1')

    assert info.owner is None
    assert info.to_dict()['state'] == 'Unknown(77)'
