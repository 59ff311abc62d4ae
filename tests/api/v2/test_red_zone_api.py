"""
Tests for the red zone API endpoints (/api/v2/red-zone).
"""
import pytest
from httpx import AsyncClient

from redzone.models.red_zone import RedZoneRule
from tests.factories import AutoResolveRulePayloadFactory, ConditionFactory, OrRulePayloadFactory, RulePayloadFactory

RED_ZONE_PREFIX = "/api/v2/red-zone"


async def _create_rule_via_api(client: AsyncClient, **overrides) -> dict:
    response = await client.post(f"{RED_ZONE_PREFIX}/rules", json=RulePayloadFactory(**overrides))
    assert response.status_code == 201, f"Rule creation failed: {response.text}"
    return response.json()


async def _create_alert_via_api(client: AsyncClient, customer_id: int, **overrides) -> dict:
    payload = {"customer_id": customer_id, "reason": "Owner asked about cancelling", "severity": "high_risk"}
    payload.update(overrides)
    response = await client.post(f"{RED_ZONE_PREFIX}/alerts", json=payload)
    assert response.status_code == 201, f"Alert creation failed: {response.text}"
    return response.json()


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------


class TestCatalogs:
    @pytest.mark.asyncio
    async def test_fields(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/fields")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"customer", "customer_metrics", "subscription", "invoice", "company"}
        nps = next(f for f in data["customer_metrics"] if f["path"] == "nps")
        assert nps == {
            "id": "customer_metrics_nps",
            "label": "Nps",
            "entityType": "customer_metrics",
            "fieldType": "number",
            "path": "nps",
        }

    @pytest.mark.asyncio
    async def test_operators(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/operators")

        assert response.status_code == 200
        assert len(response.json()) == 10

    @pytest.mark.asyncio
    async def test_operators_for_type(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/operators", params={"field_type": "boolean"})

        names = {op["name"] for op in response.json()}
        assert names == {"equals", "not_equals", "is_empty", "is_not_empty"}

    @pytest.mark.asyncio
    async def test_operators_bad_type(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/operators", params={"field_type": "currency"})

        assert response.status_code == 422
        assert response.json()["code"] == "VAL_001"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestRules:
    @pytest.mark.asyncio
    async def test_create_rule(self, client: AsyncClient):
        rule = await _create_rule_via_api(client, severity="critical")

        assert rule["id"] > 0
        assert rule["severity"] == "critical"
        assert rule["enabled"] is True
        assert rule["valid"] is True
        assert rule["created_at"] is not None
        condition = rule["conditions"]["groups"][0]["conditions"][0]
        assert condition["field"] == "nps"
        assert condition["operator"] == "less_than"
        assert rule["conditions"]["logicOperator"] == "AND"

    @pytest.mark.asyncio
    async def test_create_rule_upgrades_legacy_conditions(self, client: AsyncClient):
        rule = await _create_rule_via_api(client, conditions=[ConditionFactory()])

        assert len(rule["conditions"]["groups"]) == 1
        assert rule["conditions"]["groups"][0]["logicOperator"] == "AND"

    @pytest.mark.asyncio
    async def test_create_rule_duplicate_name(self, client: AsyncClient):
        await _create_rule_via_api(client, name="Quiet accounts")

        response = await client.post(f"{RED_ZONE_PREFIX}/rules", json=RulePayloadFactory(name="Quiet accounts"))

        assert response.status_code == 400
        assert response.json()["code"] == "BIZ_001"

    @pytest.mark.asyncio
    async def test_create_rule_invalid_conditions(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules", json=RulePayloadFactory(conditions={"logicOperator": "AND", "groups": []})
        )

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VAL_001"
        assert data["errors"]

    @pytest.mark.asyncio
    async def test_create_rule_unknown_operator(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules", json=RulePayloadFactory(conditions=[ConditionFactory(operator="near")])
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_auto_resolve_rule_without_conditions(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules", json=AutoResolveRulePayloadFactory(resolution_conditions=None)
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_rules(self, client: AsyncClient):
        await _create_rule_via_api(client, severity="critical")
        await _create_rule_via_api(client, severity="attention_needed", enabled=False)

        response = await client.get(f"{RED_ZONE_PREFIX}/rules")
        assert response.json()["total"] == 2

        response = await client.get(f"{RED_ZONE_PREFIX}/rules", params={"enabled": "true"})
        assert [r["severity"] for r in response.json()["items"]] == ["critical"]

        response = await client.get(f"{RED_ZONE_PREFIX}/rules", params={"severity": "attention_needed"})
        assert [r["enabled"] for r in response.json()["items"]] == [False]

    @pytest.mark.asyncio
    async def test_get_rule(self, client: AsyncClient):
        created = await _create_rule_via_api(client)

        response = await client.get(f"{RED_ZONE_PREFIX}/rules/{created['id']}")

        assert response.status_code == 200
        assert response.json()["name"] == created["name"]

    @pytest.mark.asyncio
    async def test_stored_rules_report_validity(self, client: AsyncClient, test_db):
        valid = await _create_rule_via_api(client)
        test_db.add_all(
            [
                RedZoneRule(
                    name="Stale rule",
                    severity="high_risk",
                    conditions=[ConditionFactory()],
                    auto_resolve=True,
                    resolution_conditions=None,
                ),
                RedZoneRule(
                    name="Bad operator rule",
                    severity="critical",
                    conditions=[ConditionFactory(operator="between", value="1,5")],
                ),
            ]
        )
        await test_db.commit()

        response = await client.get(f"{RED_ZONE_PREFIX}/rules")

        assert response.status_code == 200
        items = {r["name"]: r for r in response.json()["items"]}
        assert items[valid["name"]]["valid"] is True
        assert items[valid["name"]]["errors"] == []
        assert items["Stale rule"]["valid"] is False
        assert items["Stale rule"]["errors"]
        assert items["Bad operator rule"]["valid"] is False
        assert items["Bad operator rule"]["conditions"][0]["operator"] == "between"
        assert any(e["type"] == "union_tag_invalid" for e in items["Bad operator rule"]["errors"])

        response = await client.get(f"{RED_ZONE_PREFIX}/rules/{items['Stale rule']['id']}")

        assert response.status_code == 200
        assert response.json()["valid"] is False

        response = await client.post(f"{RED_ZONE_PREFIX}/check")
        assert len(response.json()["errors"]) == 2

    @pytest.mark.asyncio
    async def test_get_rule_not_found(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/rules/9999")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "RES_001"
        assert data["instance"] == f"{RED_ZONE_PREFIX}/rules/9999"

    @pytest.mark.asyncio
    async def test_update_rule(self, client: AsyncClient):
        created = await _create_rule_via_api(client)

        response = await client.patch(
            f"{RED_ZONE_PREFIX}/rules/{created['id']}",
            json={"severity": "critical", "notification_message": "Engagement collapsed"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["severity"] == "critical"
        assert data["notification_message"] == "Engagement collapsed"
        assert data["name"] == created["name"]
        assert data["conditions"] == created["conditions"]

    @pytest.mark.asyncio
    async def test_update_rule_checks_merged_rule(self, client: AsyncClient):
        created = await _create_rule_via_api(client)

        response = await client.patch(f"{RED_ZONE_PREFIX}/rules/{created['id']}", json={"auto_resolve": True})

        assert response.status_code == 422
        assert response.json()["code"] == "VAL_001"

        response = await client.patch(
            f"{RED_ZONE_PREFIX}/rules/{created['id']}",
            json={"auto_resolve": True, "resolution_conditions": [{"field_path": "nps", "operator": "greater_than", "value": 6}]},
        )

        assert response.status_code == 200
        assert response.json()["resolution_conditions"][0]["field"] == "nps"

    @pytest.mark.asyncio
    async def test_update_rule_duplicate_name(self, client: AsyncClient):
        await _create_rule_via_api(client, name="Quiet accounts")
        other = await _create_rule_via_api(client)

        response = await client.patch(f"{RED_ZONE_PREFIX}/rules/{other['id']}", json={"name": "Quiet accounts"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_rule(self, client: AsyncClient):
        created = await _create_rule_via_api(client)

        response = await client.delete(f"{RED_ZONE_PREFIX}/rules/{created['id']}")
        assert response.status_code == 204

        response = await client.get(f"{RED_ZONE_PREFIX}/rules/{created['id']}")
        assert response.status_code == 404


class TestRuleAuthoring:
    @pytest.mark.asyncio
    async def test_validate_valid(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/validate", json={"conditions": [ConditionFactory()]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["errors"] == []
        assert data["conditions"]["groups"][0]["conditions"][0]["field"] == "nps"

    @pytest.mark.asyncio
    async def test_validate_invalid(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/validate", json={"conditions": [ConditionFactory(operator="near")]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["conditions"] is None
        assert any(error["type"] == "union_tag_invalid" for error in data["errors"])

    @pytest.mark.asyncio
    async def test_try_rule(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/test",
            json={
                "conditions": OrRulePayloadFactory()["conditions"],
                "record": {"nps": 8, "days_since_campaign": 90},
                "resolution_conditions": [ConditionFactory(operator="greater_than", value="6")],
            },
        )

        assert response.status_code == 200
        assert response.json() == {"matched": True, "group_results": [False, True], "resolution_matched": True}

    @pytest.mark.asyncio
    async def test_try_rule_without_resolution(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/test",
            json={"conditions": RulePayloadFactory()["conditions"], "record": {}},
        )

        assert response.json() == {"matched": False, "group_results": [False], "resolution_matched": None}

    @pytest.mark.asyncio
    async def test_preview(self, client: AsyncClient, at_risk_customer, healthy_customer):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/preview", json={"conditions": OrRulePayloadFactory()["conditions"]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["customers_evaluated"] == 2
        assert data["total_matches"] == 1
        assert data["sample_customers"][0]["name"] == "Harbor Coffee Co"

    @pytest.mark.asyncio
    async def test_preview_limit(self, client: AsyncClient, at_risk_customer, healthy_customer):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/rules/preview",
            json={"conditions": [ConditionFactory(field="status", operator="equals", value="active")], "limit": 1},
        )

        data = response.json()
        assert data["total_matches"] == 2
        assert len(data["sample_customers"]) == 1


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TestAlerts:
    @pytest.mark.asyncio
    async def test_create_alert(self, client: AsyncClient, healthy_customer):
        alert = await _create_alert_via_api(client, healthy_customer.id, notes="Spoke with owner")

        assert alert["status"] == "open"
        assert alert["severity"] == "high_risk"
        assert alert["rule_id"] is None
        assert alert["notes"] == "Spoke with owner"
        assert alert["created_at"] is not None

    @pytest.mark.asyncio
    async def test_create_alert_unknown_customer(self, client: AsyncClient):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/alerts", json={"customer_id": 9999, "reason": "Churn risk", "severity": "critical"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "RES_001"

    @pytest.mark.asyncio
    async def test_create_alert_unknown_rule(self, client: AsyncClient, healthy_customer):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/alerts",
            json={"customer_id": healthy_customer.id, "reason": "Churn risk", "severity": "critical", "rule_id": 9999},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_create_alert_bad_severity(self, client: AsyncClient, healthy_customer):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/alerts",
            json={"customer_id": healthy_customer.id, "reason": "Churn risk", "severity": "urgent"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_alerts(self, client: AsyncClient, at_risk_customer, healthy_customer):
        first = await _create_alert_via_api(client, at_risk_customer.id, severity="critical")
        await _create_alert_via_api(client, healthy_customer.id)
        await client.post(f"{RED_ZONE_PREFIX}/alerts/{first['id']}/resolve")

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts")
        data = response.json()
        assert data["total"] == 2
        assert data["page"] == 1
        assert data["page_size"] == 20

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"status": "open"})
        assert [a["customer_id"] for a in response.json()["items"]] == [healthy_customer.id]

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"severity": "critical"})
        assert [a["id"] for a in response.json()["items"]] == [first["id"]]

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"customer_id": at_risk_customer.id})
        assert response.json()["total"] == 1

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"customer_id": 0})
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_list_alerts_pagination(self, client: AsyncClient, healthy_customer):
        for _ in range(3):
            await _create_alert_via_api(client, healthy_customer.id)

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"page": 2, "page_size": 2})

        data = response.json()
        assert data["total"] == 3
        assert len(data["items"]) == 1

    @pytest.mark.asyncio
    async def test_get_alert_not_found(self, client: AsyncClient):
        response = await client.get(f"{RED_ZONE_PREFIX}/alerts/9999")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resolve_alert(self, client: AsyncClient, healthy_customer):
        alert = await _create_alert_via_api(client, healthy_customer.id)

        response = await client.post(
            f"{RED_ZONE_PREFIX}/alerts/{alert['id']}/resolve",
            json={"resolved_by": 5, "resolution_summary": "Booked a review meeting"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "resolved"
        assert data["resolved_by"] == 5
        assert data["resolution_summary"] == "Booked a review meeting"
        assert data["resolved_at"] is not None

    @pytest.mark.asyncio
    async def test_resolve_alert_twice(self, client: AsyncClient, healthy_customer):
        alert = await _create_alert_via_api(client, healthy_customer.id)

        first = await client.post(f"{RED_ZONE_PREFIX}/alerts/{alert['id']}/resolve", json={"resolved_by": 5})
        second = await client.post(f"{RED_ZONE_PREFIX}/alerts/{alert['id']}/resolve", json={"resolved_by": 6})

        assert second.status_code == 200
        assert second.json()["resolved_by"] == 5
        assert second.json()["resolved_at"] == first.json()["resolved_at"]

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts/{alert['id']}/activity")
        assert [entry["action"] for entry in response.json()] == ["created", "resolved"]

    @pytest.mark.asyncio
    async def test_activity_records_performer(self, client: AsyncClient, healthy_customer):
        response = await client.post(
            f"{RED_ZONE_PREFIX}/alerts",
            params={"performed_by": 42},
            json={"customer_id": healthy_customer.id, "reason": "Churn risk", "severity": "critical"},
        )
        alert = response.json()

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts/{alert['id']}/activity")

        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["performed_by"] == 42
        assert entries[0]["details"] == {"severity": "critical"}


class TestCheck:
    @pytest.mark.asyncio
    async def test_run_check(self, client: AsyncClient, at_risk_customer, healthy_customer):
        rule = await _create_rule_via_api(client, **OrRulePayloadFactory(severity="critical"))

        response = await client.post(f"{RED_ZONE_PREFIX}/check")

        assert response.status_code == 200
        data = response.json()
        assert data["customers_evaluated"] == 2
        assert data["rules_evaluated"] == 1
        assert data["alerts_raised"] == 1
        assert data["errors"] == []

        response = await client.get(f"{RED_ZONE_PREFIX}/alerts", params={"status": "open"})
        items = response.json()["items"]
        assert [(a["customer_id"], a["rule_id"]) for a in items] == [(at_risk_customer.id, rule["id"])]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
