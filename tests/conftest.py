import numpy as np
import pytest

from silocalize.contracts import ReceiverArray

C_WATER = 1500.0


@pytest.fixture
def array6():
    """Six hydrophones at different depths (not coplanar)."""
    return ReceiverArray.from_positions(
        [[0, 0, -1], [20, 0, -3], [0, 20, -2], [20, 20, -6], [10, 10, -12], [10, 0, -8]],
        ids=["H1", "H2", "H3", "H4", "H5", "H6"],
    )


@pytest.fixture
def array5(array6):
    return ReceiverArray(array6.receivers[:5])


@pytest.fixture
def array4():
    # тетраэдр, опорный приёмник в начале координат
    return ReceiverArray.from_positions([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]],
                                        ids=["A", "B", "C", "D"])


@pytest.fixture
def flat5():
    return ReceiverArray.from_positions(
        [[0, 0, 0], [0, 9, 0], [10, 0, 0], [10, 10, 0], [5, 0, 0]],
        ids=["A", "B", "C", "D", "E"],
    )


@pytest.fixture
def sources():
    return [np.array([8.0, 12.0, -5.0]), np.array([15.0, 5.0, -3.0]), np.array([4.0, 4.0, -9.0])]
