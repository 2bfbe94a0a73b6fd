from .fold_evaluator import ScoreRecord, evaluate, evaluate_record

__all__ = ['ScoreRecord', 'evaluate', 'evaluate_record']
