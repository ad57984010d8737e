"""Tenant and ownership checks for appointment access."""

from app.scheduling.models import Actor, Appointment, Role

# Roles that manage every appointment of their tenant
STAFF_ROLES = frozenset({Role.ADMIN_TENANT, Role.RECEPTIONIST, Role.STAFF})


class TenantAuthorizer:
    """Authorizes actors against the tenant, provider or patient of an appointment."""

    def may_access_tenant(self, actor: Actor, tenant_id: str) -> bool:
        """Actor works for the tenant; patients never do."""
        return (
            actor.role != Role.PATIENT
            and actor.tenant_id is not None
            and actor.tenant_id == tenant_id
        )

    def owns_as_patient(self, actor: Actor, appointment: Appointment) -> bool:
        """Actor is the patient the appointment was booked for."""
        if actor.role != Role.PATIENT or appointment.patient_id != actor.id:
            return False
        return actor.tenant_id is None or actor.tenant_id == appointment.tenant_id

    def may_view(self, actor: Actor, appointment: Appointment) -> bool:
        """Tenant staff see every appointment, patients only their own."""
        return self.may_access_tenant(actor, appointment.tenant_id) or self.owns_as_patient(
            actor, appointment
        )

    def may_act(self, actor: Actor, appointment: Appointment) -> bool:
        """
        Check if the actor may modify an appointment.

        Staff roles may act on any appointment of their tenant. Doctors and
        members may act only on appointments assigned to them. Patients go
        through their own cancellation instead.
        """
        if not self.may_access_tenant(actor, appointment.tenant_id):
            return False
        if actor.role in STAFF_ROLES:
            return True
        if actor.role == Role.DOCTOR:
            return appointment.doctor_id == actor.id
        if actor.role == Role.MEMBER:
            return appointment.member_id == actor.id
        return False
