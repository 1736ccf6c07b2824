from margin_scout.matching.product_matcher import ProductMatcher

__all__ = ["ProductMatcher"]
