from roster_batch.selectors.change_selector import ChangeSelector

__all__ = ["ChangeSelector"]
