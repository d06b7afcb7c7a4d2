"""Vehicle health check answer mapping and scoring.

Answers are stored numerically on a 1 to 5 scale. Each numeric answer is
normalised to 0..1 and weighted by its item weight; sections are then
combined by section weight.
"""
from dataclasses import dataclass, field

VALUE_TITLES = {
    1: "Critical/Unsafe",
    2: "Needs Attention",
    3: "Acceptable",
    4: "Good Condition",
    5: "Optimal/Like New",
}
TITLE_VALUES = {title: value for value, title in VALUE_TITLES.items()}


def title_for_value(value):
    if isinstance(value, int) and not isinstance(value, bool) and value in VALUE_TITLES:
        return VALUE_TITLES[value]
    return value


def value_for_title(title):
    if isinstance(title, str) and title in TITLE_VALUES:
        return TITLE_VALUES[title]
    return title


def convert_answers_for_storage(answers):
    return [dict(answer, value=value_for_title(answer.get("value"))) for answer in answers]


def is_numeric_answer(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def applicable_sections(sections, powertrain):
    return [
        section
        for section in sections
        if not section.get("applicable_to") or powertrain in section["applicable_to"]
    ]


@dataclass
class HealthScore:
    sections: dict = field(default_factory=dict)
    total: float = 0.0
    answered: int = 0
    total_items: int = 0

    @property
    def progress(self):
        return {"answered": self.answered, "total": self.total_items}


def score_answers(sections, powertrain, answers):
    """Score a list of `{item_id, value}` answers against template sections.

    A section with no answers scores 0 and does not count towards the total.
    """
    by_item = {answer["item_id"]: answer for answer in answers}
    active = applicable_sections(sections, powertrain)

    section_scores = {}
    weighted_total = 0.0
    total_weight = 0.0
    for section in active:
        items = section.get("items", [])
        section_answers = [(item, by_item[item["id"]]) for item in items if item["id"] in by_item]
        if not section_answers:
            section_scores[section["id"]] = 0.0
            continue

        item_weighted = 0.0
        item_weight = 0.0
        for item, answer in section_answers:
            value = answer.get("value")
            if is_numeric_answer(value):
                weight = float(item.get("weight", 1))
                item_weighted += ((value - 1) / 4) * weight
                item_weight += weight

        score = item_weighted / item_weight if item_weight > 0 else 0.0
        section_scores[section["id"]] = score
        section_weight = float(section.get("weight", 1))
        weighted_total += score * section_weight
        total_weight += section_weight

    return HealthScore(
        sections=section_scores,
        total=weighted_total / total_weight if total_weight > 0 else 0.0,
        answered=sum(1 for answer in answers if answer.get("value") is not None),
        total_items=sum(len(section.get("items", [])) for section in active),
    )
