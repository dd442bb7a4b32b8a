class LocalizationError(Exception):
    """Базовая ошибка локализации одного события или калибровки."""


class InsufficientDataError(LocalizationError):
    """Слишком мало известных времён прихода для выбранного решателя."""


class SingularSystemError(LocalizationError):
    """Геометрия приёмников вырождена (копланарны/коллинеарны) для данной системы."""


class NoValidSolutionError(LocalizationError):
    """Квадратное уравнение не даёт физически допустимого (R >= 0) корня."""


class ConvergenceError(LocalizationError):
    """
    Калибровка исчерпала лимит итераций или минимум упёрся в границу
    интервала поиска. Лучшее найденное значение доступно в .result
    (converged=False).
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
