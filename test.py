import json
import re
import uuid
import pytest
from concurrent.futures import ThreadPoolExecutor

import app as receipt_app
import store as receipt_store
from app import INVALID_RECEIPT_MESSAGE, RECEIPT_NOT_FOUND_MESSAGE, create_app
from points import score, score_date_time, score_items, score_retailer, score_total
from receipts import InvalidReceiptError, Item, decode_receipt, is_valid
from store import ReceiptStore, new_id

valid_receipts = {
    json.dumps({
        "retailer": "Target",
        "purchaseDate": "2022-01-01",
        "purchaseTime": "13:01",
        "items": [
            {
                "shortDescription": "Mountain Dew 12PK",
                "price": "6.49"
            }, {
                "shortDescription": "Emils Cheese Pizza",
                "price": "12.25"
            }, {
                "shortDescription": "Knorr Creamy Chicken",
                "price": "1.26"
            }, {
                "shortDescription": "Doritos Nacho Cheese",
                "price": "3.35"
            }, {
                "shortDescription": "   Klarbrunn 12-PK 12 FL OZ  ",
                "price": "12.00"
            }
        ],
        "total": "35.35"
    }): 28,
    json.dumps({
        "retailer": "M&M Corner Market",
        "purchaseDate": "2022-03-20",
        "purchaseTime": "14:33",
        "items": [
            {
                "shortDescription": "Gatorade",
                "price": "2.25"
            }, {
                "shortDescription": "Gatorade",
                "price": "2.25"
            }, {
                "shortDescription": "Gatorade",
                "price": "2.25"
            }, {
                "shortDescription": "Gatorade",
                "price": "2.25"
            }
        ],
        "total": "9.00"
    }): 109,
    json.dumps({
        "retailer": "Walgreens",
        "purchaseDate": "2022-01-02",
        "purchaseTime": "08:13",
        "total": "2.65",
        "items": [
            {"shortDescription": "Pepsi - 12-oz", "price": "1.25"},
            {"shortDescription": "Dasani", "price": "1.40"}
        ]
    }): 15,
    json.dumps({
        "retailer": "Target",
        "purchaseDate": "2022-01-02",
        "purchaseTime": "13:13",
        "total": "1.25",
        "items": [
            {"shortDescription": "Pepsi - 12-oz", "price": "1.25"}
        ]
    }): 31
}

required_receipt_attributes = ["retailer", "total", "items", "purchaseDate", "purchaseTime"]
ID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


@pytest.fixture
def store():
    return ReceiptStore()


@pytest.fixture
def app(store):
    return create_app(store, {'DEBUG': True, 'TESTING': True})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def simple_receipt_skeleton():
    return {
        "retailer": "Target",
        "purchaseDate": "2022-01-02",
        "purchaseTime": "13:13",
        "total": "1.25",
        "items": [
            {"shortDescription": "Pepsi - 12-oz", "price": "1.25"}
        ]
    }


def post_receipt(client, receipt):
    return client.post('/receipts/process', content_type='application/json', data=json.dumps(receipt))


def assert_invalid(response):
    assert response.status_code == 400
    assert response.mimetype == 'text/plain'
    assert response.get_data(as_text=True) == INVALID_RECEIPT_MESSAGE + "\n"


# scoring rules

def test_score_retailer_counts_ascii_alphanumerics_only():
    assert score_retailer("Target") == 6
    assert score_retailer("M&M Corner Market") == 14
    assert score_retailer("  - _ &") == 0
    assert score_retailer("Café") == 3


@pytest.mark.parametrize("total, expected", [
    ("100.00", 75),
    ("9.00", 75),
    ("50.25", 25),
    ("50.75", 25),
    ("50.10", 0),
    ("0.00", 75),
    ("35.35", 0),
])
def test_score_total(total, expected):
    assert score_total(total) == expected


@pytest.mark.parametrize("description, expected", [
    ("abc", 3),
    ("abcdef", 3),
    ("abcdefghi", 3),
    ("   abc   ", 3),
    ("abcd", 0),
    ("abcde", 0),
    ("abcdefg", 0),
])
def test_score_items_description_length(description, expected):
    assert score_items([Item(description, "15.00")]) == expected


def test_score_items_rounds_price_bonus_up():
    assert score_items([Item("Emils Cheese Pizza", "12.25")]) == 3
    assert score_items([Item("Dasani", "1.40")]) == 1
    assert score_items([Item("Dasani", "0.00")]) == 0


def test_score_items_pairs():
    item = Item("Gatorade", "2.25")
    assert score_items([item]) == 0
    assert score_items([item] * 2) == 5
    assert score_items([item] * 5) == 10


def test_score_items_skips_unparseable_price():
    assert score_items([Item("abc", "not-a-price")]) == 0


@pytest.mark.parametrize("time, expected", [
    ("14:00", 0),
    ("14:01", 10),
    ("15:00", 10),
    ("15:59", 10),
    ("16:00", 0),
    ("13:59", 0),
    ("00:00", 0),
])
def test_score_purchase_time_window(time, expected):
    assert score_date_time("2022-01-02", time) == expected


@pytest.mark.parametrize("date, expected", [
    ("2022-01-01", 6),
    ("2022-01-31", 6),
    ("2022-01-02", 0),
    ("2020-02-29", 6),
])
def test_score_purchase_day(date, expected):
    assert score_date_time(date, "09:00") == expected


def test_score_single_item_target_receipt():
    receipt = decode_receipt({
        "retailer": "Target",
        "purchaseDate": "2022-01-01",
        "purchaseTime": "13:01",
        "items": [{"shortDescription": "Mountain Dew 12PK", "price": "6.49"}],
        "total": "35.35"
    })
    # 6 retailer characters + 6 for the odd day
    assert score(receipt) == 12


def test_score_is_deterministic():
    for test_json in valid_receipts:
        receipt = decode_receipt(json.loads(test_json))
        assert score(receipt) == score(receipt)


# decoding and validation

def test_decode_receipt_preserves_item_order(simple_receipt_skeleton):
    simple_receipt_skeleton["items"].append({"shortDescription": "Dasani", "price": "1.40"})
    receipt = decode_receipt(simple_receipt_skeleton)
    assert [item.short_description for item in receipt.items] == ["Pepsi - 12-oz", "Dasani"]
    assert is_valid(receipt)


def test_decode_receipt_ignores_unknown_fields(simple_receipt_skeleton):
    simple_receipt_skeleton["cashier"] = "Sam"
    assert is_valid(decode_receipt(simple_receipt_skeleton))


@pytest.mark.parametrize("payload", [None, [], "receipt", 25])
def test_decode_receipt_rejects_non_objects(payload):
    with pytest.raises(InvalidReceiptError):
        decode_receipt(payload)


def test_decode_receipt_matches_keys_case_insensitively():
    receipt = decode_receipt({
        "Retailer": "Walgreens",
        "PURCHASEDATE": "2022-01-02",
        "purchasetime": "08:13",
        "Total": "2.65",
        "Items": [{"ShortDescription": "Dasani", "PRICE": "1.40"}]
    })
    assert receipt.retailer == "Walgreens"
    assert receipt.items == (Item("Dasani", "1.40"),)
    assert is_valid(receipt)


def test_decode_receipt_last_matching_key_wins(simple_receipt_skeleton):
    simple_receipt_skeleton["RETAILER"] = "Walgreens"
    assert decode_receipt(simple_receipt_skeleton).retailer == "Walgreens"


def test_decode_receipt_missing_fields_fail_validation():
    receipt = decode_receipt({})
    assert receipt.retailer == ""
    assert receipt.items == ()
    assert not is_valid(receipt)


@pytest.mark.parametrize("retailer", ["Target", "M&M Corner Market", "Big_Box-2", "a"])
def test_valid_retailer_names(simple_receipt_skeleton, retailer):
    simple_receipt_skeleton["retailer"] = retailer
    assert is_valid(decode_receipt(simple_receipt_skeleton))


@pytest.mark.parametrize("retailer", ["", "Target!", "Joe's", "Café", "Shop.com", "Target\u00a0Store"])
def test_invalid_retailer_names(simple_receipt_skeleton, retailer):
    simple_receipt_skeleton["retailer"] = retailer
    assert not is_valid(decode_receipt(simple_receipt_skeleton))


def test_trailing_newline_does_not_pass_amount_pattern(simple_receipt_skeleton):
    simple_receipt_skeleton["total"] = "1.25\n"
    assert not is_valid(decode_receipt(simple_receipt_skeleton))


# submitting receipts

def test_process_valid_receipts(client):
    for test_json, expected_points in valid_receipts.items():
        expected = {"points": expected_points}
        process_response = client.post('/receipts/process', content_type='application/json', data=test_json)
        assert process_response.status_code == 200
        assert process_response.mimetype == 'application/json'
        receipt_id = json.loads(process_response.data)["id"]
        assert ID_PATTERN.fullmatch(receipt_id)
        uuid.UUID(receipt_id)
        get_response = client.get(f'/receipts/{receipt_id}/points')
        assert get_response.status_code == 200
        assert get_response.mimetype == 'application/json'
        assert expected == json.loads(get_response.data)


def test_process_receipt_without_json_content_type(client, simple_receipt_skeleton):
    process_response = client.post('/receipts/process', data=json.dumps(simple_receipt_skeleton))
    assert process_response.status_code == 200


def test_process_receipts_unique_ids(client, simple_receipt_skeleton):
    receipt_ids = []
    for i in range(10):
        process_response = post_receipt(client, simple_receipt_skeleton)
        receipt_ids.append(json.loads(process_response.data)["id"])
    assert len(set(receipt_ids)) == len(receipt_ids)
    for receipt_id in receipt_ids:
        assert json.loads(client.get(f'/receipts/{receipt_id}/points').data) == {"points": 31}


def test_process_receipts_malformed_json(client, store):
    for body in ['{"retailer": "Target"', 'not json', '']:
        process_response = client.post('/receipts/process', content_type='application/json', data=body)
        assert_invalid(process_response)
    assert len(store) == 0


def test_process_receipts_invalid_retailer_name(client, simple_receipt_skeleton):
    for name in ["   !", "", "Target?", "<Target>"]:
        simple_receipt_skeleton["retailer"] = name
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_purchase_date(client, simple_receipt_skeleton):
    invalid_dates = ["test", "0000-01-01", "2023-15-15", "2023-10-99", "2023-02-29", "2022-1-1",
                     "dummydummydummy", "", '9999-99-99']
    for date in invalid_dates:
        simple_receipt_skeleton["purchaseDate"] = date
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_purchase_time(client, simple_receipt_skeleton):
    invalid_times = ["test", "13:99", "99:13", "24:00", "9:30", "dummydummydummy", "", '13-13', "13:13:13"]
    for time in invalid_times:
        simple_receipt_skeleton["purchaseTime"] = time
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_attribute_formats_except_items(client, simple_receipt_skeleton):
    invalid_elements = [[], 25, 3.88, {}, True]
    for attribute in required_receipt_attributes:
        if attribute != "items":
            original = simple_receipt_skeleton[attribute]
            for elem in invalid_elements:
                simple_receipt_skeleton[attribute] = elem
                assert_invalid(post_receipt(client, simple_receipt_skeleton))
            simple_receipt_skeleton[attribute] = original


def test_process_receipts_missing_attributes(client, simple_receipt_skeleton):
    for attribute in required_receipt_attributes:
        receipt = dict(simple_receipt_skeleton)
        del receipt[attribute]
        assert_invalid(post_receipt(client, receipt))


def test_process_receipts_invalid_items_format(client, simple_receipt_skeleton):
    for elem in [None, 25, 3.88, {}, ""]:
        simple_receipt_skeleton["items"] = elem
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_empty_items_list_is_not_stored(client, store, simple_receipt_skeleton):
    simple_receipt_skeleton["items"] = []
    assert_invalid(post_receipt(client, simple_receipt_skeleton))
    assert len(store) == 0
    res = client.get(f'/receipts/{new_id()}/points')
    assert res.status_code == 404


def test_process_receipts_invalid_item_formats(client, simple_receipt_skeleton):
    for elem in [None, 25, 3.88, [], ""]:
        simple_receipt_skeleton["items"] = [elem]
        assert_invalid(post_receipt(client, simple_receipt_skeleton))
    for field in ["price", "shortDescription"]:
        for elem in [25, 3.88, [], {}]:
            item = {"shortDescription": "Pepsi - 12-oz", "price": "1.25"}
            item[field] = elem
            simple_receipt_skeleton["items"] = [item]
            assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_item_descriptions(client, simple_receipt_skeleton):
    for description in ["", "???", "&&&&", "Ben & Jerry", "<<<<>>>>", "\\\\"]:
        simple_receipt_skeleton["items"][0]["shortDescription"] = description
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_item_price(client, simple_receipt_skeleton):
    for price in ["test", "0", "333", "", "5.310", ".22", "-1.00", "1,000.00"]:
        simple_receipt_skeleton["items"][0]["price"] = price
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipts_invalid_total(client, simple_receipt_skeleton):
    for total in ["test", "0", "333", "", "5.310", ".22", "+1.25", "1,000.00"]:
        simple_receipt_skeleton["total"] = total
        assert_invalid(post_receipt(client, simple_receipt_skeleton))


def test_process_receipt_regenerates_colliding_id(client, store, simple_receipt_skeleton, monkeypatch):
    store.put("taken", 7)
    ids = iter(["taken", "fresh"])
    monkeypatch.setattr(receipt_app, "new_id", lambda: next(ids))
    process_response = post_receipt(client, simple_receipt_skeleton)
    assert json.loads(process_response.data) == {"id": "fresh"}
    assert store.get("taken") == (7, True)
    assert store.get("fresh") == (31, True)


# looking up points

def test_get_points_nonexistent_id(client):
    res = client.get('/receipts/test/points')
    assert res.status_code == 404
    assert res.get_data(as_text=True) == RECEIPT_NOT_FOUND_MESSAGE + "\n"


def test_get_points_never_issued_id(client):
    res = client.get(f'/receipts/{uuid.uuid4()}/points')
    assert res.status_code == 404
    assert res.get_data(as_text=True) == RECEIPT_NOT_FOUND_MESSAGE + "\n"


def test_get_points_idempotency(client, simple_receipt_skeleton):
    process_response = post_receipt(client, simple_receipt_skeleton)
    receipt_id = json.loads(process_response.data)["id"]
    for i in range(5):
        get_response = client.get(f'/receipts/{receipt_id}/points')
        assert get_response.status_code == 200
        assert json.loads(get_response.data)["points"] == 31


# routing misses

def test_wrong_methods_are_not_found(client, simple_receipt_skeleton):
    receipt_id = json.loads(post_receipt(client, simple_receipt_skeleton).data)["id"]
    assert client.get('/receipts/process').status_code == 404
    assert client.put('/receipts/process', json=simple_receipt_skeleton).status_code == 404
    assert client.post(f'/receipts/{receipt_id}/points').status_code == 404
    assert client.delete(f'/receipts/{receipt_id}/points').status_code == 404
    assert client.head(f'/receipts/{receipt_id}/points').status_code == 404
    assert client.get(f'/receipts/{receipt_id}/points').status_code == 200


def test_unmatched_paths_are_not_found(client, simple_receipt_skeleton):
    receipt_id = json.loads(post_receipt(client, simple_receipt_skeleton).data)["id"]
    for path in ['/receipts//points', f'/receipts/{receipt_id}', f'/receipts/{receipt_id}/points/extra',
                 f'/receipts/{receipt_id}/score', f'/receipts/a/{receipt_id}/points', '/']:
        res = client.get(path)
        assert res.status_code == 404
        assert res.get_data(as_text=True) != RECEIPT_NOT_FOUND_MESSAGE + "\n"


# store and identifiers

def test_store_records_are_immutable(store):
    assert store.put("abc", 10)
    assert not store.put("abc", 20)
    assert store.get("abc") == (10, True)
    assert store.get("missing") == (0, False)
    assert len(store) == 1


def test_stores_are_isolated(simple_receipt_skeleton):
    first, second = ReceiptStore(), ReceiptStore()
    receipt_id = json.loads(post_receipt(create_app(first).test_client(), simple_receipt_skeleton).data)["id"]
    assert first.get(receipt_id) == (31, True)
    assert second.get(receipt_id) == (0, False)
    assert create_app(second).test_client().get(f'/receipts/{receipt_id}/points').status_code == 404


def test_new_id_format():
    ids = {new_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(ID_PATTERN.fullmatch(receipt_id) for receipt_id in ids)


def test_new_id_falls_back_to_timestamp(monkeypatch):
    def unavailable(n):
        raise NotImplementedError("no randomness source")

    monkeypatch.setattr(receipt_store.os, "urandom", unavailable)
    receipt_id = new_id()
    assert receipt_id.isdigit()


def test_process_receipt_succeeds_without_randomness(client, store, simple_receipt_skeleton, monkeypatch):
    def unavailable(n):
        raise OSError("no randomness source")

    monkeypatch.setattr(receipt_store.os, "urandom", unavailable)
    process_response = post_receipt(client, simple_receipt_skeleton)
    assert process_response.status_code == 200
    receipt_id = json.loads(process_response.data)["id"]
    assert store.get(receipt_id) == (31, True)


# concurrency

def test_process_receipts_concurrency(app, store, simple_receipt_skeleton):
    params = [simple_receipt_skeleton] * 1000

    def test_post(json_param):
        res = app.test_client().post('/receipts/process', json=json_param)
        return json.loads(res.data)["id"]

    with ThreadPoolExecutor(max_workers=50) as pool:
        receipt_ids = list(pool.map(test_post, params))
    assert len(set(receipt_ids)) == len(params)
    assert len(store) == len(params)
    assert all(store.get(receipt_id) == (31, True) for receipt_id in receipt_ids)


def test_get_points_concurrency(app, client, simple_receipt_skeleton):
    process_response = post_receipt(client, simple_receipt_skeleton)
    receipt_id = json.loads(process_response.data)["id"]
    params = [receipt_id] * 1000

    def test_get(id_param):
        return json.loads(app.test_client().get(f'/receipts/{id_param}/points').data)["points"]

    with ThreadPoolExecutor(max_workers=50) as pool:
        assert set(pool.map(test_get, params)) == {31}


def test_process_receipt_with_capitalized_keys(client):
    receipt = {
        "Retailer": "Target",
        "PurchaseDate": "2022-01-02",
        "PurchaseTime": "13:13",
        "Total": "1.25",
        "Items": [{"ShortDescription": "Pepsi - 12-oz", "Price": "1.25"}]
    }
    process_response = post_receipt(client, receipt)
    assert process_response.status_code == 200
    receipt_id = json.loads(process_response.data)["id"]
    assert json.loads(client.get(f'/receipts/{receipt_id}/points').data) == {"points": 31}


# startup

def test_main_runs_with_app_config(monkeypatch):
    calls = []

    def fake_run(self, **kwargs):
        calls.append((self, kwargs))

    monkeypatch.setattr(receipt_app.Flask, "run", fake_run)
    receipt_app.main({"HOST": "127.0.0.1", "PORT": 9090, "THREADED": False})
    assert len(calls) == 1
    flask_app, kwargs = calls[0]
    assert kwargs == {"host": "127.0.0.1", "port": 9090, "threaded": False}
    assert flask_app.config["PORT"] == 9090
