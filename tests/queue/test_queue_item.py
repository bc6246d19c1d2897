"""Tests for QueueItem payload validation and serialisation."""

import math

import pytest

from sentinel.core.errors import QueuePayloadError
from sentinel.queue import QueueItem, QueueType


class TestQueueItem:
    def test_dict_payload(self):
        item = QueueItem({"to": "a@example.com"}, QueueType.MAIL, site_id=4)

        assert item.data_type == "dict"
        assert item.queue_type == "mail"
        assert item.to_dict() == {
            "data": {"to": "a@example.com"},
            "dataType": "dict",
            "queueType": "mail",
            "siteId": 4,
        }

    @pytest.mark.parametrize(
        "data, data_type",
        [(None, "null"), (True, "bool"), (3, "int"), (1.5, "float"), ("x", "str"), ([1], "list")],
    )
    def test_data_types(self, data, data_type):
        assert QueueItem(data, "mail").data_type == data_type

    def test_tuples_become_lists(self):
        assert QueueItem((1, (2, 3)), "mail").data == [1, [2, 3]]

    def test_queue_type_normalised(self):
        assert QueueItem(1, " Mail ").queue_type == "mail"

    def test_from_json(self):
        item = QueueItem({"ext": [1, 2]}, "extensions", site_id=2)
        assert QueueItem.from_json(item.to_json()) == item

    def test_self_referencing_payload_rejected(self):
        data: dict = {"a": 1}
        data["self"] = data
        with pytest.raises(QueuePayloadError):
            QueueItem(data, "mail")

    def test_nested_queue_item_rejected(self):
        with pytest.raises(QueuePayloadError):
            QueueItem({"inner": QueueItem(1, "mail")}, "mail")

    @pytest.mark.parametrize("data", [object(), {1: "int key"}, math.nan, {"x": math.inf}, {1, 2}])
    def test_non_json_payload_rejected(self, data):
        with pytest.raises(QueuePayloadError):
            QueueItem(data, "mail")

    def test_shared_subvalue_is_not_a_cycle(self):
        shared = [1, 2]
        assert QueueItem({"a": shared, "b": shared}, "mail").data == {"a": [1, 2], "b": [1, 2]}

    def test_empty_queue_type_rejected(self):
        with pytest.raises(QueuePayloadError):
            QueueItem(1, " ")

    def test_non_integer_site_rejected(self):
        with pytest.raises(QueuePayloadError):
            QueueItem(1, "mail", site_id="4")

    @pytest.mark.parametrize("text", ["not json", "[]", '{"data": 1}'])
    def test_from_json_rejects_garbage(self, text):
        with pytest.raises(QueuePayloadError):
            QueueItem.from_json(text)
