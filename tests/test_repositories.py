from datetime import date, datetime

import pandas as pd
import pytest
from unittest.mock import Mock

from config.settings import ClickHouseConfig
from deal_analytics.data.connectors import ClickHouseConnector
from deal_analytics.data.models import PurchaseEvent
from deal_analytics.data.repositories import (
    ANALYTICS_TABLE, EVENT_COLUMNS, ORDER_COLUMNS, DealEventRepository, date_conditions
)


class TestDealEventRepository:
    """测试 ClickHouse 促销事件仓库"""

    @pytest.fixture
    def connector(self):
        return Mock(spec=ClickHouseConnector)

    @pytest.fixture
    def repo(self, connector):
        return DealEventRepository(connector)

    def test_date_conditions_are_inclusive(self):
        params = {}
        conditions = date_conditions('created_at', date(2024, 3, 1), date(2024, 3, 7), params)

        assert conditions == [
            "created_at >= {date_from:Date}",
            "created_at < {date_to_exclusive:Date}"
        ]
        assert params == {'date_from': date(2024, 3, 1), 'date_to_exclusive': date(2024, 3, 8)}

    def test_open_ended_range(self):
        params = {}
        assert date_conditions('created_at', None, None, params) == []
        assert params == {}

    def test_has_analytics_schema(self, repo, connector):
        connector.table_exists.return_value = False

        assert repo.has_analytics_schema() is False
        connector.table_exists.assert_called_once_with(ANALYTICS_TABLE)

    def test_list_active_deals(self, repo, connector):
        connector.execute.return_value = [
            (1, 'Chocolate Pastry', 101, None, 499, 1, 1, 1, 1, 'desc', datetime(2024, 1, 1), None),
            (2, 'Cupcake', 102, 7, 599.5, 0.99, None, None, 1, None, None, None),
        ]
        deals = repo.list_active_deals()

        assert [d.id for d in deals] == [1, 2]
        assert deals[0].threshold_amount == 499.0
        assert deals[1].deal_price == 0.99
        assert deals[1].max_quantity_per_order == 1
        assert deals[1].priority == 0
        assert 'is_active = 1' in connector.execute.call_args[0][0]

    def test_list_orders_passes_range(self, repo, connector):
        connector.execute_df.return_value = pd.DataFrame()

        orders = repo.list_orders(date(2024, 3, 1), date(2024, 3, 1))

        query, params = connector.execute_df.call_args[0]
        assert 'FROM orders' in query
        assert params['date_to_exclusive'] == date(2024, 3, 2)
        assert list(orders.columns) == ORDER_COLUMNS
        assert orders.empty

    def test_list_redemptions_filters_purchases(self, repo, connector):
        connector.execute_df.return_value = pd.DataFrame({'deal_id': [1], 'event_type': ['purchase']})

        events = repo.list_redemptions(date(2024, 3, 1), date(2024, 3, 7))

        query, params = connector.execute_df.call_args[0]
        assert params['event_type'] == 'purchase'
        assert list(events.columns) == EVENT_COLUMNS
        assert events.iloc[0]['deal_id'] == 1

    def test_existing_purchase_keys(self, repo, connector):
        connector.execute.return_value = [(1, 10, 100), (2, 10, None)]

        keys = repo.existing_purchase_keys([10, 10])

        assert keys == {(1, 10, 100), (2, 10, None)}
        assert connector.execute.call_args[0][1] == {'order_ids': [10]}

    def test_existing_purchase_keys_without_orders(self, repo, connector):
        assert repo.existing_purchase_keys([]) == set()
        connector.execute.assert_not_called()

    def test_insert_purchase_events(self, repo, connector):
        connector.insert_rows.return_value = 1
        event = PurchaseEvent(deal_id=1, order_id=10, order_item_id=100, price=1.0, quantity=1,
                              revenue=1.0, created_at=datetime(2024, 3, 1), customer_id=7, cart_value=520.0)

        assert repo.insert_purchase_events([event]) == 1

        table, rows = connector.insert_rows.call_args[0]
        assert table == ANALYTICS_TABLE
        assert rows[0][EVENT_COLUMNS.index('event_type')] == 'purchase'
        assert rows[0][EVENT_COLUMNS.index('order_item_id')] == 100
        assert connector.insert_rows.call_args[1]['column_names'] == EVENT_COLUMNS

    def test_update_deal_priorities(self, repo, connector):
        repo.update_deal_priorities({1: 2, 3: 4})

        assert connector.command.call_count == 2
        assert connector.command.call_args[0][1] == {'priority': 4, 'deal_id': 3}


class TestClickHouseConnector:
    """测试 ClickHouse 连接器"""

    @pytest.fixture
    def connector(self):
        connector = ClickHouseConnector(ClickHouseConfig(
            host='localhost', port=8123, database='shop', user='default', password='', secure=False
        ))
        connector._client = Mock()
        return connector

    def test_table_exists(self, connector):
        connector._client.command.return_value = 1

        assert connector.table_exists('deal_analytics') is True
        connector._client.command.assert_called_once_with(
            "EXISTS TABLE {table:Identifier}", parameters={'table': 'deal_analytics'}
        )

    def test_insert_rows_in_batches(self, connector):
        rows = [[i] for i in range(5)]

        assert connector.insert_rows('t', rows, column_names=['x'], batch_size=2) == 5
        assert connector._client.insert.call_count == 3

    def test_insert_nothing(self, connector):
        assert connector.insert_rows('t', [], column_names=['x']) == 0
        connector._client.insert.assert_not_called()

    def test_query_errors_propagate(self, connector):
        connector._client.query.side_effect = RuntimeError("Code: 60. Table does not exist")

        with pytest.raises(RuntimeError):
            connector.execute("SELECT 1")

    def test_close(self, connector):
        client = connector._client
        connector.close()

        client.close.assert_called_once()
        assert connector._client is None
