"""
Tests for the permission oracle adapters.
"""

from conftest import FOCAL_ID, MANAGER_ID, OUTSIDER_ID, REQUESTOR_ID, make_payload
from travel_kernel.domain.request import RequestStatus, RequestType, WorkflowAction
from travel_kernel.domain.routing import Role
from travel_services.permissions import (
    PermissionOracle,
    RoleBasedPermissionOracle,
    StaticPermissionOracle,
)
from travel_services.workflow_service import WorkflowService

ROLE_PERMISSIONS = {
    "transport_focal": ("approve_transport_focal",),
    "line_manager": ("approve_transport_manager", "approve_visa_manager"),
    "visa_clerk": ("process_visa_applications",),
}


class TestStaticPermissionOracle:

    def test_grant_and_revoke(self):
        oracle = StaticPermissionOracle({FOCAL_ID: ("approve_transport_focal",)})

        oracle.grant(FOCAL_ID, "approve_visa_focal")
        oracle.revoke(FOCAL_ID, "approve_transport_focal")

        assert oracle.capabilities_of(FOCAL_ID) == frozenset({"approve_visa_focal"})
        assert not oracle.has_permission(FOCAL_ID, "approve_transport_focal")

    def test_unknown_actor_holds_nothing(self):
        oracle = StaticPermissionOracle()

        assert not oracle.has_permission(OUTSIDER_ID, "approve_transport_focal")
        assert oracle.capabilities_of(OUTSIDER_ID) == frozenset()
        oracle.revoke(OUTSIDER_ID, "approve_transport_focal")


class TestRoleBasedPermissionOracle:

    def test_capability_resolves_through_any_role(self):
        oracle = RoleBasedPermissionOracle(
            {MANAGER_ID: ["transport_focal", "line_manager"]}, ROLE_PERMISSIONS,
        )

        assert oracle.roles_of(MANAGER_ID) == ("transport_focal", "line_manager")
        assert oracle.has_permission(MANAGER_ID, "approve_transport_focal")
        assert oracle.has_permission(MANAGER_ID, "approve_visa_manager")
        assert not oracle.has_permission(MANAGER_ID, "process_visa_applications")

    def test_unknown_role_grants_nothing(self):
        oracle = RoleBasedPermissionOracle({FOCAL_ID: ["travel_desk"]}, ROLE_PERMISSIONS)

        assert oracle.roles_of(FOCAL_ID) == ("travel_desk",)
        assert not oracle.has_permission(FOCAL_ID, "approve_transport_focal")

    def test_unknown_actor_has_no_roles(self):
        oracle = RoleBasedPermissionOracle({}, ROLE_PERMISSIONS)

        assert oracle.roles_of(OUTSIDER_ID) == ()
        assert not oracle.has_permission(OUTSIDER_ID, "approve_transport_focal")

    def test_satisfies_the_oracle_protocol(self):
        assert isinstance(RoleBasedPermissionOracle({}, {}), PermissionOracle)

    def test_drives_workflow_approvals(self, session_factory, dispatcher, clock):
        oracle = RoleBasedPermissionOracle(
            {FOCAL_ID: ["transport_focal"], MANAGER_ID: ["line_manager"]},
            ROLE_PERMISSIONS,
        )
        service = WorkflowService(session_factory, oracle, dispatcher, clock=clock)
        request = service.submit_request(
            RequestType.TRANSPORT, make_payload(), REQUESTOR_ID,
        ).request

        focal = service.act_on_request(
            request.request_id, RequestType.TRANSPORT, WorkflowAction.APPROVE, FOCAL_ID,
        )
        manager = service.act_on_request(
            request.request_id, RequestType.TRANSPORT, WorkflowAction.APPROVE, MANAGER_ID,
        )

        assert focal.resolved_step.approver_role == Role.DEPARTMENT_FOCAL
        assert manager.request.status == RequestStatus.PENDING_TRANSPORT_ADMIN
