from faker import Faker
from faker.providers import BaseProvider


class WarehouseProvider(BaseProvider):
    """
    仓储演示数据生成器
    生成产品名、分类名和计量单位
    """

    product_prefixes = [
        '有机', '进口', '精选', '冷冻', '脱脂', '全麦', '低糖', '高钙', '即食', '原味'
    ]

    product_suffixes = [
        '牛奶', '酸奶', '面包', '饼干', '果汁', '大米', '橄榄油', '咖啡豆', '燕麦片', '奶酪'
    ]

    category_names = ['乳制品', '烘焙', '饮料', '粮油', '零食', '冷冻食品']

    unit_names = ['pcs', 'box', 'bottle', 'bag', 'kg']

    def product_name(self):
        return f"{self.random_element(self.product_prefixes)}{self.random_element(self.product_suffixes)}"

    def stock_unit(self):
        return self.random_element(self.unit_names)


# 初始化 Faker 并添加自定义 Provider
fake = Faker('zh_CN')
fake.add_provider(WarehouseProvider)
