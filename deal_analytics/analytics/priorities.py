from typing import Dict, List

from ..data.models import Deal
from ..exceptions import NotFoundError, ValidationError

DIRECTIONS = ('up', 'down')


def sort_by_priority(deals: List[Deal]) -> List[Deal]:
    """按优先级排序；优先级相同按在列表中的位置"""
    return [
        deal for _, deal in sorted(enumerate(deals), key=lambda item: (item[1].priority, item[0]))
    ]


def move_deal(deals: List[Deal], deal_id: int, direction: str) -> Dict[int, int]:
    """上移/下移一个促销，返回需要更新的 {deal_id: priority}

    上移取前一个促销的优先级 - 1，下移取后一个促销的优先级 + 1，
    不对其他促销重新编号，因此可能出现相同优先级。
    """
    if direction not in DIRECTIONS:
        raise ValidationError(f"Invalid direction: {direction}")

    ordered = sort_by_priority(deals)
    index = next((i for i, deal in enumerate(ordered) if deal.id == deal_id), None)
    if index is None:
        raise NotFoundError(f"Deal {deal_id} not found")

    if direction == 'up':
        if index == 0:
            return {}
        new_priority = ordered[index - 1].priority - 1
    else:
        if index == len(ordered) - 1:
            return {}
        new_priority = ordered[index + 1].priority + 1

    ordered[index].priority = new_priority
    return {deal_id: new_priority}


def normalize_priorities(deals: List[Deal]) -> Dict[int, int]:
    """按当前顺序重新编号为 1..n"""
    changes = {}
    for position, deal in enumerate(sort_by_priority(deals), start=1):
        if deal.priority != position:
            changes[deal.id] = position
            deal.priority = position
    return changes
