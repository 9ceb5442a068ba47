from dataclasses import dataclass

import pytest

from rlagents.base import State
from rlagents.memory import Memory, get_batch, sample_indices
from rlagents.nn import Tensor
from rlagents.utils import (
    to_action_tensor,
    to_not_done_tensor,
    to_reward_tensor,
    to_state_tensor,
)


@dataclass(frozen=True)
class PairState(State):
    data: tuple[float, float]

    def to_tensor(self) -> Tensor:
        return Tensor(list(self.data))

    @classmethod
    def size(cls) -> int:
        return 1


def filled_memory(capacity=16, count=20):
    memory = Memory(capacity)
    for i in range(count):
        memory.push(
            PairState((float(i), float(i * 2))),
            PairState((float(-i), float(i * 3))),
            i,
            0.1,
            False,
        )
    return memory


def test_memory():
    memory = filled_memory()
    indices = sample_indices(list(range(len(memory))), 5)

    state_batch = get_batch(memory.states(), indices, lambda s: s.to_tensor())
    assert state_batch.shape == (5, 2)
    state_sample = state_batch.select(0, [0, 1]).tolist()
    assert state_sample[0][0] * 2.0 == state_sample[0][1]

    next_state_batch = get_batch(memory.next_states(), indices, to_state_tensor)
    assert next_state_batch.shape == (5, 2)
    next_sample = next_state_batch.select(0, [0, 1]).tolist()
    assert next_sample[0][0] * -3.0 == next_sample[0][1]

    action_batch = get_batch(memory.actions(), indices, to_action_tensor)
    assert action_batch.shape == (5, 1)
    assert action_batch.tolist()[0][0] == int(state_sample[0][0])

    reward_batch = get_batch(memory.rewards(), indices, to_reward_tensor)
    assert reward_batch.shape == (5, 1)
    assert reward_batch.tolist()[0][0] == pytest.approx(0.1)

    not_done_batch = get_batch(memory.dones(), indices, to_not_done_tensor)
    assert not_done_batch.shape == (5, 1)
    assert not_done_batch.tolist()[0][0] == 1.0


def test_memory_drops_oldest_when_full():
    memory = filled_memory(capacity=16, count=20)
    assert len(memory) == 16
    assert memory.states()[0] == PairState((4.0, 8.0))
    assert memory.actions()[-1] == 19
    assert all(len(buf) == 16 for buf in (
        memory.next_states(), memory.actions(), memory.rewards(), memory.dones()
    ))


def test_clear_empties_every_buffer():
    memory = filled_memory(capacity=4, count=3)
    assert not memory.is_empty()
    memory.clear()
    assert memory.is_empty()
    assert len(memory) == 0
    assert len(memory.dones()) == 0 and len(memory.rewards()) == 0


def test_invalid_capacity():
    with pytest.raises(ValueError):
        Memory(0)


def test_sample_indices_draws_from_given_set():
    sample = sample_indices([3, 7, 9], 50)
    assert len(sample) == 50
    assert set(sample) <= {3, 7, 9}


def test_sample_indices_from_empty_raises():
    with pytest.raises(ValueError):
        sample_indices([], 3)


def test_get_batch_keeps_index_order():
    memory = filled_memory(capacity=8, count=8)
    batch = get_batch(memory.states(), [2, 0, 5], to_state_tensor)
    assert [row[0] for row in batch.tolist()] == [2.0, 0.0, 5.0]


def test_get_batch_on_empty_data_raises():
    with pytest.raises(ValueError):
        get_batch([], [0], to_state_tensor)