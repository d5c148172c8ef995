from .ride import MembershipKind, RideMembership, RideRecord

__all__ = ["MembershipKind", "RideMembership", "RideRecord"]
