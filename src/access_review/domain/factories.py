"""Campaign-kind strategies for building and interpreting entities and items."""

from __future__ import annotations

from typing import Any, Protocol

from access_review.domain.directory import Directory
from access_review.domain.models import (
    Campaign,
    CampaignType,
    Entity,
    EntityType,
    Item,
    ItemType,
    new_id,
)
from access_review.domain.owners import NoOwnerFound, OwnerFound, OwnerResolution


class ItemFactory(Protocol):
    subject_centric: bool

    def create_entity(self, campaign: Campaign, subject: str, **fields: Any) -> Entity: ...

    def create_item(
        self, campaign: Campaign, entity: Entity, item_type: ItemType, **fields: Any
    ) -> Item: ...

    def bucket_key(self, item: Item) -> str: ...

    def challenger_for(
        self, entity: Entity, item: Item, directory: Directory
    ) -> OwnerResolution: ...


def _attach_entity(campaign: Campaign, entity: Entity) -> Entity:
    campaign.entity_ids.append(entity.id)
    return entity


def _attach_item(entity: Entity, item: Item) -> Item:
    entity.item_ids.append(item.id)
    return item


def _identity_owner(name: str | None, directory: Directory) -> OwnerResolution:
    if name is None:
        return NoOwnerFound("item has no subject identity")
    if directory.get_identity(name) is None:
        return NoOwnerFound(f"identity {name} no longer exists")
    return OwnerFound(name)


class IdentityItemFactory:
    """Identity and role-membership campaigns: one entity per identity."""

    subject_centric = True

    def create_entity(self, campaign: Campaign, subject: str, **fields: Any) -> Entity:
        entity = Entity(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            type=EntityType.IDENTITY,
            identity=subject,
            **fields,
        )
        return _attach_entity(campaign, entity)

    def create_item(
        self, campaign: Campaign, entity: Entity, item_type: ItemType, **fields: Any
    ) -> Item:
        item = Item(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            entity_id=entity.id,
            type=item_type,
            identity=entity.identity,
            **fields,
        )
        return _attach_item(entity, item)

    def bucket_key(self, item: Item) -> str:
        return item.identity or item.id

    def challenger_for(self, entity: Entity, item: Item, directory: Directory) -> OwnerResolution:
        return _identity_owner(item.identity, directory)


class AccountGroupItemFactory:
    """Account group campaigns: one entity per group.

    Membership campaigns review each member, permission campaigns review the
    group's own permissions.
    """

    def __init__(self, membership: bool) -> None:
        self.membership = membership
        self.subject_centric = membership

    def create_entity(self, campaign: Campaign, subject: str, **fields: Any) -> Entity:
        entity = Entity(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            type=EntityType.ACCOUNT_GROUP,
            account_group=subject,
            **fields,
        )
        return _attach_entity(campaign, entity)

    def create_item(
        self, campaign: Campaign, entity: Entity, item_type: ItemType, **fields: Any
    ) -> Item:
        item = Item(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            entity_id=entity.id,
            type=item_type,
            account_group=entity.account_group,
            **fields,
        )
        return _attach_item(entity, item)

    def bucket_key(self, item: Item) -> str:
        if self.membership and item.identity:
            return item.identity
        return item.id

    def challenger_for(self, entity: Entity, item: Item, directory: Directory) -> OwnerResolution:
        if self.membership:
            return _identity_owner(item.identity, directory)
        if entity.owner:
            return OwnerFound(entity.owner)
        application = directory.get_application(entity.application)
        if application is not None and application.owner:
            return OwnerFound(application.owner)
        return NoOwnerFound(f"account group {entity.account_group} has no owner")


class DataOwnerItemFactory:
    """Data owner campaigns: one entity per entitlement, one item per holder."""

    subject_centric = True

    def create_entity(self, campaign: Campaign, subject: str, **fields: Any) -> Entity:
        entity = Entity(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            type=EntityType.DATA_OWNER,
            target_name=subject,
            **fields,
        )
        return _attach_entity(campaign, entity)

    def create_item(
        self, campaign: Campaign, entity: Entity, item_type: ItemType, **fields: Any
    ) -> Item:
        item = Item(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            entity_id=entity.id,
            type=item_type,
            **fields,
        )
        return _attach_item(entity, item)

    def bucket_key(self, item: Item) -> str:
        return item.identity or item.id

    def challenger_for(self, entity: Entity, item: Item, directory: Directory) -> OwnerResolution:
        return _identity_owner(item.identity, directory)


class RoleCompositionItemFactory:
    """Role composition campaigns: one entity per role, items are its relationships."""

    subject_centric = False

    def create_entity(self, campaign: Campaign, subject: str, **fields: Any) -> Entity:
        entity = Entity(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            type=EntityType.BUSINESS_ROLE,
            target_name=subject,
            **fields,
        )
        return _attach_entity(campaign, entity)

    def create_item(
        self, campaign: Campaign, entity: Entity, item_type: ItemType, **fields: Any
    ) -> Item:
        item = Item(
            id=fields.pop("id", None) or new_id(),
            campaign_id=campaign.id,
            entity_id=entity.id,
            type=item_type,
            parent_role=entity.target_name,
            **fields,
        )
        return _attach_item(entity, item)

    def bucket_key(self, item: Item) -> str:
        return item.id

    def challenger_for(self, entity: Entity, item: Item, directory: Directory) -> OwnerResolution:
        role = directory.get_role(entity.target_name)
        if role is not None and role.owner:
            return OwnerFound(role.owner)
        return NoOwnerFound(f"role {entity.target_name} has no owner")


def item_factory_for(campaign_type: CampaignType) -> ItemFactory:
    if campaign_type in (CampaignType.IDENTITY, CampaignType.BUSINESS_ROLE_MEMBERSHIP):
        return IdentityItemFactory()
    if campaign_type == CampaignType.ACCOUNT_GROUP_MEMBERSHIP:
        return AccountGroupItemFactory(membership=True)
    if campaign_type == CampaignType.ACCOUNT_GROUP_PERMISSIONS:
        return AccountGroupItemFactory(membership=False)
    if campaign_type == CampaignType.DATA_OWNER:
        return DataOwnerItemFactory()
    if campaign_type == CampaignType.BUSINESS_ROLE_COMPOSITION:
        return RoleCompositionItemFactory()
    raise ValueError(f"Unsupported campaign type: {campaign_type}")
