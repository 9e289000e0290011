"""The six mention-processing rules.

Each processor covers one concern and emits operations for the merge engine:

- ``RestaurantDishConnectionProcessor``: create or extend the connection for a
  resolved restaurant and dish pair, recording the mention.
- ``GeneralPraiseProcessor``: credit upvotes of a "this place is great"
  mention to the restaurant itself.
- ``DishOnlyProcessor``: a dish without restaurant context cannot be placed
  in the graph; recorded as skipped.
- ``AttributeEnrichmentProcessor``: merge categories and restaurant attributes
  into the connections of the mention, or into every connection of the
  restaurant when the mention names no dish.
- ``MenuItemProcessor``: flag the connection as a menu item.
- ``DescriptiveAdditionProcessor``: union descriptive attributes, capped.
"""

from dishgraph.errors import AttributeProcessingError, ComponentProcessingError
from dishgraph.mention import MentionShape, NormalizedMention
from dishgraph.pipeline.attributes import AttributeProcessor
from dishgraph.pipeline.interfaces import (
    ComponentOperation,
    ComponentProcessingContext,
    ComponentProcessorInterface,
    ComponentResult,
    ComponentType,
    OperationType,
)
from dishgraph.pipeline.resolver import BatchResolutionResult


def _pair_resolved(mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
    return (
        mention.shape == MentionShape.FULL_PAIR
        and resolved.entity_id_for(mention.restaurant_temp_id) is not None
        and resolved.entity_id_for(mention.dish_temp_id) is not None
    )


def _restaurant_resolved(mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
    return mention.has_restaurant and resolved.entity_id_for(mention.restaurant_temp_id) is not None


class RestaurantDishConnectionProcessor(ComponentProcessorInterface):
    component_type = ComponentType.RESTAURANT_DISH_CONNECTION

    def __init__(self, attributes: AttributeProcessor):
        self.attributes = attributes

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        return _pair_resolved(mention, resolved)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        mention = context.mention
        selective, descriptive = self.attributes.effective_attributes(mention)
        if not self.attributes.config.enable_descriptive_addition:
            descriptive = ()
        operation = ComponentOperation(
            operation_type=OperationType.UPSERT_CONNECTION,
            restaurant_id=context.restaurant_id,
            dish_or_category_id=context.dish_or_category_id,
            categories=mention.categories,
            selective_attributes=selective,
            descriptive_attributes=descriptive,
            restaurant_attributes=mention.restaurant_attributes,
            is_menu_item=mention.is_menu_item,
            mention=mention,
        )
        return self._result(
            context,
            operations=(operation,),
            attribute_outcome=self.attributes.outcome_for(mention),
        )


class GeneralPraiseProcessor(ComponentProcessorInterface):
    component_type = ComponentType.GENERAL_PRAISE

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        return mention.general_praise and _restaurant_resolved(mention, resolved)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        operation = ComponentOperation(
            operation_type=OperationType.UPDATE_ENTITY,
            entity_id=context.restaurant_id,
            praise_upvotes=context.mention.upvotes,
            mention=context.mention,
        )
        return self._result(context, operations=(operation,))


class DishOnlyProcessor(ComponentProcessorInterface):
    """Records dish mentions that lack a usable restaurant as skipped."""

    component_type = ComponentType.DISH_ONLY

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        return mention.has_dish and not _restaurant_resolved(mention, resolved)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        if context.mention.shape == MentionShape.DISH_ONLY:
            reason = "dish mention has no restaurant context"
        else:
            reason = "restaurant could not be resolved"
        return self._result(context, processed=False, skip_reason=reason)


class AttributeEnrichmentProcessor(ComponentProcessorInterface):
    component_type = ComponentType.ATTRIBUTE_ENRICHMENT

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        if mention.shape == MentionShape.ATTRIBUTE_ONLY:
            return _restaurant_resolved(mention, resolved)
        return _pair_resolved(mention, resolved) and bool(mention.categories or mention.restaurant_attributes)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        mention = context.mention
        if mention.shape == MentionShape.ATTRIBUTE_ONLY:
            restaurant_id = context.restaurant_id
            if restaurant_id is None:
                raise ComponentProcessingError(self.component_type.value, "merge_attributes", "restaurant not resolved")
            connections = await context.connection_storage.list_connections_for_restaurant(restaurant_id)
            targets = tuple(c.connection_id for c in connections)
            if not targets:
                return self._result(context, processed=False, skip_reason="restaurant has no connections to enrich")
            operation = ComponentOperation(
                operation_type=OperationType.MERGE_ATTRIBUTES,
                restaurant_id=restaurant_id,
                connection_ids=targets,
                restaurant_attributes=mention.restaurant_attributes,
            )
        else:
            if not context.connection_ids:
                raise AttributeProcessingError(
                    self.component_type.value,
                    "merge_attributes",
                    "no connection was established for this mention",
                    attribute_type="descriptive",
                    context={"mention": mention.temp_id},
                )
            operation = ComponentOperation(
                operation_type=OperationType.MERGE_ATTRIBUTES,
                restaurant_id=context.restaurant_id,
                dish_or_category_id=context.dish_or_category_id,
                connection_ids=context.connection_ids,
                categories=mention.categories,
                restaurant_attributes=mention.restaurant_attributes,
            )
        return self._result(context, operations=(operation,))


class MenuItemProcessor(ComponentProcessorInterface):
    component_type = ComponentType.MENU_ITEM

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        return mention.is_menu_item and _pair_resolved(mention, resolved)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        if not context.connection_ids:
            raise ComponentProcessingError(
                self.component_type.value,
                "set_menu_item",
                "no connection was established for this mention",
            )
        operation = ComponentOperation(
            operation_type=OperationType.SET_MENU_ITEM,
            restaurant_id=context.restaurant_id,
            dish_or_category_id=context.dish_or_category_id,
            connection_ids=context.connection_ids,
            is_menu_item=True,
        )
        return self._result(context, operations=(operation,))


class DescriptiveAdditionProcessor(ComponentProcessorInterface):
    component_type = ComponentType.DESCRIPTIVE_ADDITION

    def __init__(self, attributes: AttributeProcessor):
        self.attributes = attributes

    def should_process(self, mention: NormalizedMention, resolved: BatchResolutionResult) -> bool:
        if not self.attributes.config.enable_descriptive_addition:
            return False
        _, descriptive = self.attributes.effective_attributes(mention)
        return bool(descriptive) and _pair_resolved(mention, resolved)

    async def process(self, context: ComponentProcessingContext) -> ComponentResult:
        if not context.connection_ids:
            raise AttributeProcessingError(
                self.component_type.value,
                "merge_attributes",
                "no connection was established for this mention",
                attribute_type="descriptive",
                context={"mention": context.mention.temp_id},
            )
        _, descriptive = self.attributes.effective_attributes(context.mention)
        operation = ComponentOperation(
            operation_type=OperationType.MERGE_ATTRIBUTES,
            restaurant_id=context.restaurant_id,
            dish_or_category_id=context.dish_or_category_id,
            connection_ids=context.connection_ids,
            descriptive_attributes=descriptive,
        )
        return self._result(
            context,
            operations=(operation,),
            attribute_outcome=self.attributes.outcome_for(context.mention),
        )


def default_processors(attributes: AttributeProcessor) -> list[ComponentProcessorInterface]:
    """One instance of each processor, in execution order."""
    return [
        RestaurantDishConnectionProcessor(attributes),
        GeneralPraiseProcessor(),
        DishOnlyProcessor(),
        AttributeEnrichmentProcessor(),
        MenuItemProcessor(),
        DescriptiveAdditionProcessor(attributes),
    ]
