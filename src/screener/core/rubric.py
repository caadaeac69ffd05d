"""Screening rubric contract: instruction text, verdicts, and result columns."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .config_loader import resolve_repo_path

logger = logging.getLogger(__name__)

DECISION_ACCEPT = "Соответствует требованиям"
DECISION_MENTOR_REVIEW = "Нужна дополнительная проверка ментором"
DECISION_REJECT = "Не соответствует требованиям"
DEFAULT_DECISIONS = (DECISION_ACCEPT, DECISION_MENTOR_REVIEW, DECISION_REJECT)

# Sink column order; also the key set a model response must contain.
DEFAULT_RESULT_FIELDS = ("candidate_tg", "summary", "decision")

DEFAULT_RUBRIC_TEXT = """
Ответь как всемирно известный эксперт в области IT-рекрутинга с престижной наградой за достижения в подборе кадров.

Твоя задача — отбор кандидатов на курс, требующий определённого уровня знаний и опыта в IT сфере. Вот улучшенная версия твоего запроса:

Ты HR менеджер, ответственный за отбор кандидатов на курс, который требует от участников определённого уровня знаний и опыта в IT сфере. Твоя задача - проверять кандидатов на соответствие следующим критериям:

1) Основные знания фронтенд и/или бэкенд разработки:

Кандидат должен уверенно владеть базовыми принципами и технологиями, используемыми во фронтенд и/или бэкенд разработках.
Примеры необходимых знаний: HTML, CSS, JavaScript для фронтенда; базовые знания серверных языков программирования и работы с базами данных для бэкенда.

2) Опыт работы с фреймворками:

Кандидат должен иметь базовые знания и опыт работы хотя бы с одним из основных фреймворков:
Фронтенд: React, Vue, Angular и другие.
Бэкенд: FastAPI, Django, Flask, Node.js и другие.
Если кандидат владеет хотя бы одним из направлений (фронтенд или бэкенд) на нормальном уровне, он соответствует требованиям.

3) Активное вовлечение в IT сферу:

Убедись, что кандидат активно вовлечён в IT сферу. Это может быть текущая работа в IT компании, участие в проектах, написание кода, участие в хакатонах и т.д.
Проверь портфолио кандидата или его участие в сообществах разработчиков.

4) Пребывание в Алматы:

Кандидат должен иметь возможность физически находиться в Алматы до 9 августа. Это требование важно для участия в очных мероприятиях или встречах, которые планируются в рамках курса.

5) Наличие GitHub аккаунта:

Кандидат обязан иметь GitHub аккаунт.

Если кандидат соответствует всем вышеуказанным требованиям, его заявка будет принята. Если возникают сомнения, рекомендуется консультация с ментором, но это не рекомендуется.

Ваш ответ должен представлять собой объект JSON, содержащий 3 атрибута:

{
  "candidate_tg": "Телеграм кандидата для связи",
  "summary": "Краткий вывод заявки кандидата, причина принятия или не принятия на курс",
  "decision": "Соответствует требованиям" или "Нужна дополнительная проверка ментором" или "Не соответствует требованиям"
}

Пожалуйста, обеспечь строгий отбор, чтобы слабые кандидаты не проходили.
""".strip()


@dataclass(slots=True)
class Rubric:
    instruction: str = DEFAULT_RUBRIC_TEXT
    decisions: tuple[str, ...] = DEFAULT_DECISIONS
    result_fields: tuple[str, ...] = DEFAULT_RESULT_FIELDS
    required_fields: tuple[str, ...] = field(default=("decision", "summary"))

    def __post_init__(self) -> None:
        missing = [name for name in self.required_fields if name not in self.result_fields]
        if missing:
            raise ValueError(f"result_fields must include: {', '.join(missing)}")
        if not self.decisions:
            raise ValueError("decisions must be non-empty")


def load_rubric_text(path: str | None) -> str:
    """Read a rubric override from disk, falling back to the built-in text."""
    if not path:
        return DEFAULT_RUBRIC_TEXT
    resolved = resolve_repo_path(path)
    try:
        text = resolved.read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.error("Failed to read rubric file %s; using built-in rubric: %s", resolved, exc)
        return DEFAULT_RUBRIC_TEXT
    return text or DEFAULT_RUBRIC_TEXT
