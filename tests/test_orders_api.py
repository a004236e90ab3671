import asyncio
import dataclasses
from decimal import Decimal

from sqlalchemy import select

from services.order_service.models import OrderLog, PlebJob, PlebJobLog
from services.order_service.repository import OrderRepository
from shared.config.container import GLOBAL_PAYMENTS

from conftest import DISPATCH_EMAIL, auth_headers, next_weekday

CARD = {"number": "4263970000005262", "expMonth": "12", "expYear": "2030", "cvv": "123"}


async def place_order(client, **overrides):
    body = {"customer_id": 100, "test_ids": [1], "shipping_type": 1, "payment_method": CARD}
    body.update(overrides)
    response = await client.post(
        "/checkout/global-payments", json=body, headers=auth_headers(10, "Practitioner")
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestOrderAccess:

    async def test_detail_includes_logs(self, client, catalog, people):
        placed = await place_order(client)

        response = await client.get(f"/orders/{placed['order_id']}", headers=auth_headers(10, "Practitioner"))

        assert response.status_code == 200
        body = response.json()
        assert body["order"]["order_number"] == placed["order_number"]
        assert Decimal(body["order"]["total_val"]) == Decimal("65.00")
        assert [log["status"] for log in body["logs"]] == ["Started"]
        assert body["jobs"] == []

    async def test_customer_sees_only_orders_they_placed(self, client, catalog, people):
        placed = await place_order(client)

        response = await client.get(f"/orders/{placed['order_id']}", headers=auth_headers(12, "Customer"))

        assert response.status_code == 403

    async def test_moderator_sees_practitioner_orders(self, client, catalog, people):
        placed = await place_order(client)

        response = await client.get(
            f"/orders/{placed['order_id']}", headers=auth_headers(11, "Moderator", practitioner_id=10)
        )

        assert response.status_code == 200

    async def test_missing_order(self, client, catalog, people):
        response = await client.get("/orders/999", headers=auth_headers(1, "Admin"))
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Order not found"}


class TestOrderStatus:

    async def test_status_change_is_logged(self, client, db, catalog, people):
        placed = await place_order(client)

        response = await client.put(
            f"/orders/{placed['order_id']}/status",
            json={"status": "Ready"},
            headers=auth_headers(10, "Practitioner"),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "Ready"
        async with db() as session:
            logs = (await session.execute(select(OrderLog).where(OrderLog.order_id == placed["order_id"]))).scalars().all()
        assert [(log.status, log.changed_by) for log in logs] == [("Started", 10), ("Ready", 10)]

    async def test_unknown_status(self, client, catalog, people):
        placed = await place_order(client)
        response = await client.put(
            f"/orders/{placed['order_id']}/status", json={"status": "Teleported"}, headers=auth_headers(1, "Admin")
        )
        assert response.status_code == 400

    async def test_customer_cannot_change_status(self, client, catalog, people):
        placed = await place_order(client)
        response = await client.put(
            f"/orders/{placed['order_id']}/status", json={"status": "Complete"}, headers=auth_headers(12, "Customer")
        )
        assert response.status_code == 403


class TestPaymentSettlement:

    async def test_parallel_captures_reach_the_gateway_once(self, client, catalog, people, gateways, monkeypatch):
        placed = await place_order(client)
        order_id = placed["order_id"]
        locked = []
        get_order_for_update = OrderRepository.get_order_for_update

        async def tracking(session, wanted):
            locked.append(wanted)
            return await get_order_for_update(session, wanted)

        monkeypatch.setattr(OrderRepository, "get_order_for_update", staticmethod(tracking))
        headers = auth_headers(10, "Practitioner")

        first, second = await asyncio.gather(
            client.post(f"/orders/{order_id}/capture", headers=headers),
            client.post(f"/orders/{order_id}/capture", headers=headers),
        )

        assert sorted([first.status_code, second.status_code]) == [200, 400]
        assert len(gateways[GLOBAL_PAYMENTS].called("capture")) == 1
        assert locked == [order_id, order_id]

    async def test_release_after_capture_is_refused(self, client, catalog, people, gateways):
        placed = await place_order(client)
        headers = auth_headers(10, "Practitioner")
        await client.post(f"/orders/{placed['order_id']}/capture", headers=headers)

        response = await client.post(f"/orders/{placed['order_id']}/release", headers=headers)

        assert response.status_code == 400
        assert gateways[GLOBAL_PAYMENTS].called("release") == []


class TestCommissions:

    async def test_practitioner_sees_commission_and_admin_settles_it(self, container, client, catalog, people):
        container.settings = dataclasses.replace(container.settings, commission_rate=Decimal("0.10"))
        await place_order(client)
        await place_order(client)

        listed = await client.get("/orders/commissions/10", headers=auth_headers(10, "Practitioner"))

        assert listed.status_code == 200, listed.text
        body = listed.json()
        assert Decimal(body["unpaid_total"]) == Decimal("13.00")
        assert [Decimal(c["commission_amount"]) for c in body["commissions"]] == [Decimal("6.50"), Decimal("6.50")]
        first_id = body["commissions"][-1]["id"]

        settled = await client.post(
            "/orders/commissions/10/mark-paid", json={"commission_ids": [first_id]}, headers=auth_headers(1, "Admin")
        )
        assert settled.json() == {"success": True, "updated": 1}

        unpaid = await client.get(
            "/orders/commissions/10", params={"is_paid": "false"}, headers=auth_headers(11, "Moderator", practitioner_id=10)
        )
        assert len(unpaid.json()["commissions"]) == 1
        assert unpaid.json()["commissions"][0]["id"] != first_id
        assert Decimal(unpaid.json()["unpaid_total"]) == Decimal("6.50")

        again = await client.post(
            "/orders/commissions/10/mark-paid", json={"commission_ids": [first_id]}, headers=auth_headers(1, "Admin")
        )
        assert again.status_code == 404

    async def test_commissions_are_private(self, client, catalog, people):
        other = await client.get("/orders/commissions/10", headers=auth_headers(20, "Practitioner"))
        assert other.status_code == 403

        settle = await client.post(
            "/orders/commissions/10/mark-paid", json={"commission_ids": [1]}, headers=auth_headers(10, "Practitioner")
        )
        assert settle.status_code == 403

    async def test_no_commission_without_a_rate(self, client, catalog, people):
        await place_order(client)

        listed = await client.get("/orders/commissions/10", headers=auth_headers(10, "Practitioner"))

        assert listed.json()["commissions"] == []
        assert Decimal(listed.json()["unpaid_total"]) == Decimal("0")


class TestAssignment:

    def _assign(self, pleb_id=7, day=0, at="10:00"):
        return {"pleb_id": pleb_id, "booking_date": next_weekday(day).isoformat(), "booking_time": at}

    async def test_allow_listed_user_assigns(self, client, db, catalog, people, pleb, distance):
        distance.set(pleb, 4)
        placed = await place_order(client)

        response = await client.post(
            f"/orders/{placed['order_id']}/assign",
            json=self._assign(),
            headers=auth_headers(20, "Moderator", email=DISPATCH_EMAIL.upper()),
        )

        assert response.status_code == 200, response.text
        job = response.json()
        assert job["job_status"] == "Assigned"
        assert job["tracking_number"].startswith("TRK")
        async with db() as session:
            logs = (await session.execute(select(PlebJobLog).where(PlebJobLog.job_id == job["id"]))).scalars().all()
        assert [log.job_status for log in logs] == ["Assigned"]

    async def test_practitioner_not_on_allow_list_is_refused(self, client, catalog, people, pleb, distance):
        distance.set(pleb, 4)
        placed = await place_order(client)

        response = await client.post(
            f"/orders/{placed['order_id']}/assign",
            json=self._assign(),
            headers=auth_headers(10, "Practitioner", email="dr.jones@clinic.test"),
        )

        assert response.status_code == 403

    async def test_second_assignment_conflicts(self, client, catalog, people, pleb, distance):
        distance.set(pleb, 4)
        placed = await place_order(client)
        admin = auth_headers(1, "Admin")

        first = await client.post(f"/orders/{placed['order_id']}/assign", json=self._assign(), headers=admin)
        second = await client.post(f"/orders/{placed['order_id']}/assign", json=self._assign(), headers=admin)

        assert first.status_code == 200
        assert second.status_code == 409

    async def test_unavailable_pleb_is_rejected_with_reason(self, client, db, catalog, people, pleb, distance):
        distance.set(pleb, 4)
        placed = await place_order(client)

        response = await client.post(
            f"/orders/{placed['order_id']}/assign", json=self._assign(day=2), headers=auth_headers(1, "Admin")
        )

        assert response.status_code == 400
        assert "not available on Wednesday" in response.json()["error"]
        async with db() as session:
            assert (await session.execute(select(PlebJob))).scalars().all() == []


class TestJobStatus:

    async def _job(self, client, pleb, distance):
        distance.set(pleb, 4)
        placed = await place_order(client)
        response = await client.post(
            f"/orders/{placed['order_id']}/assign",
            json={"pleb_id": 7, "booking_date": next_weekday(0).isoformat(), "booking_time": "09:30"},
            headers=auth_headers(1, "Admin"),
        )
        return response.json()

    async def test_pleb_updates_own_job(self, client, catalog, people, pleb, distance):
        job = await self._job(client, pleb, distance)

        response = await client.put(
            f"/orders/jobs/{job['id']}/status",
            json={"job_status": "Delivered"},
            headers=auth_headers(50, "Phlebotomist", pleb_id=7),
        )

        assert response.status_code == 200
        assert response.json()["job_status"] == "Delivered"

    async def test_other_pleb_cannot_update(self, client, catalog, people, pleb, distance):
        job = await self._job(client, pleb, distance)

        response = await client.put(
            f"/orders/jobs/{job['id']}/status",
            json={"job_status": "Delivered"},
            headers=auth_headers(51, "Phlebotomist", pleb_id=8),
        )

        assert response.status_code == 403

    async def test_pleb_lists_jobs_and_sees_the_order(self, client, catalog, people, pleb, distance):
        job = await self._job(client, pleb, distance)
        headers = auth_headers(50, "Phlebotomist", pleb_id=7)

        jobs = await client.get("/orders/jobs/pleb/7", headers=headers)
        order = await client.get(f"/orders/{job['order_id']}", headers=headers)

        assert [j["id"] for j in jobs.json()] == [job["id"]]
        assert order.status_code == 200
